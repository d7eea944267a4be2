from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.i18n import DEFAULT_LOCALE, set_locale


def _pick_from_accept_language(al: str) -> str:
    """Return the highest-weighted tag of an Accept-Language header.

    Examples:
      'id-ID,id;q=0.9,en-US;q=0.8,en;q=0.7' -> 'id-ID'
    """
    best, best_q = DEFAULT_LOCALE, -1.0
    for part in al.split(","):
        lang, _, param = part.strip().partition(";")
        if not lang:
            continue
        q = 1.0
        param = param.strip()
        if param.startswith("q="):
            try:
                q = float(param[2:])
            except ValueError:
                q = 0.0
        # ties keep header order
        if q > best_q:
            best, best_q = lang.strip(), q
    return best


def _normalize(lang: str) -> str:
    tag = (lang or DEFAULT_LOCALE).replace("_", "-").lower()
    # 'in' is the legacy ISO code some Indonesian browsers still send
    if tag.split("-", 1)[0] in {"id", "in"}:
        return "id"
    return tag.split("-", 1)[0]


class LocaleMiddleware(BaseHTTPMiddleware):
    """Parse locale from query/header and set into context.

    Priority: ?lang=xx > X-Lang > Accept-Language > default 'en'.
    """

    async def dispatch(self, request: Request, call_next):
        lang = request.query_params.get("lang") or request.headers.get("X-Lang")
        if not lang:
            al = request.headers.get("Accept-Language", "")
            lang = _pick_from_accept_language(al) if al else DEFAULT_LOCALE
        set_locale(_normalize(lang))
        return await call_next(request)
