from api.middleware.request_id import resolve_client_ip


def test_untrusted_peer_ignores_forwarding_headers():
    assert resolve_client_ip("203.0.113.5", "1.2.3.4", "5.6.7.8", []) == "203.0.113.5"
    assert resolve_client_ip("203.0.113.5", "1.2.3.4", None, ["10.0.0.0/8"]) == "203.0.113.5"


def test_trusted_peer_takes_right_most_untrusted_hop():
    trusted = ["10.0.0.0/8", "192.168.1.1"]
    assert resolve_client_ip("10.0.0.2", "6.6.6.6, 203.0.113.9, 192.168.1.1", None, trusted) == "203.0.113.9"
    assert resolve_client_ip("10.0.0.2", "203.0.113.9", None, trusted) == "203.0.113.9"


def test_trusted_peer_fallbacks():
    trusted = ["10.0.0.0/8"]
    # whole chain inside the proxy tier
    assert resolve_client_ip("10.0.0.2", "10.0.0.9, 10.0.0.3", None, trusted) == "10.0.0.9"
    assert resolve_client_ip("10.0.0.2", None, " 203.0.113.4 ", trusted) == "203.0.113.4"
    assert resolve_client_ip("10.0.0.2", None, None, trusted) == "10.0.0.2"


def test_invalid_trusted_entries_are_skipped():
    assert resolve_client_ip("10.0.0.2", "203.0.113.9", None, ["not-a-network"]) == "10.0.0.2"
    assert resolve_client_ip(None, "203.0.113.9", None, ["10.0.0.0/8"]) == "unknown"
