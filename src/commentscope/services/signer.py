"""WBI request signing for the Bilibili web API."""

import hashlib
import logging
import threading
import time
from typing import Callable, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from ..core.constants import PlatformConstants, SignerConstants
from ..core.exceptions import SigningKeyError

logger = logging.getLogger(__name__)


def derive_mixin_key(img_key: str, sub_key: str) -> str:
    """Interleave the two sub-keys through the fixed permutation table."""
    raw = img_key + sub_key
    mixed = "".join(raw[i] for i in SignerConstants.MIXIN_KEY_ENC_TAB if i < len(raw))
    return mixed[:SignerConstants.MIXIN_LENGTH]


def _key_from_url(url: str) -> str:
    """``https://i0.hdslb.com/bfs/wbi/7cd0...c6b.png`` -> ``7cd0...c6b``"""
    name = url.rsplit("/", 1)[-1]
    return name.split(".", 1)[0]


def _strip_denied(value: str) -> str:
    return "".join(ch for ch in value if ch not in SignerConstants.DENIED_CHARS)


class WbiSigner:
    """Process-scoped signing-key cache.

    Create one per process (or per client) and pass it by reference. Keys are
    fetched lazily on the first ``sign`` call and refreshed whenever they are
    older than ``ttl`` seconds; ``invalidate`` forces a refresh on next use.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        nav_url: str = SignerConstants.NAV_URL,
        ttl: float = SignerConstants.KEY_TTL_SECONDS,
        timeout: float = PlatformConstants.REQUEST_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session or requests.Session()
        self.nav_url = nav_url
        self.ttl = ttl
        self.timeout = timeout
        self.clock = clock
        self._lock = threading.Lock()
        self._img_key = ""
        self._sub_key = ""
        self._mixin_key = ""
        self._updated_at = 0.0

    @property
    def mixin_key(self) -> str:
        return self._mixin_key

    def invalidate(self):
        with self._lock:
            self._updated_at = 0.0
            self._mixin_key = ""

    def _fetch_keys(self) -> Tuple[str, str]:
        try:
            resp = self.session.get(self.nav_url, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise SigningKeyError(f"failed to fetch signing keys: {e}") from e

        code = payload.get("code")
        if code not in SignerConstants.NAV_OK_CODES:
            raise SigningKeyError(f"nav endpoint returned code {code}: {payload.get('message', '')}")

        wbi_img = (payload.get("data") or {}).get("wbi_img") or {}
        img_key = _key_from_url(wbi_img.get("img_url", ""))
        sub_key = _key_from_url(wbi_img.get("sub_url", ""))
        if not img_key or not sub_key:
            raise SigningKeyError("nav response did not include wbi_img keys")
        return img_key, sub_key

    def refresh(self, force: bool = False) -> str:
        """Return the current mixin key, fetching new sub-keys when stale."""
        with self._lock:
            now = self.clock()
            if not force and self._mixin_key and now - self._updated_at < self.ttl:
                return self._mixin_key

            img_key, sub_key = self._fetch_keys()
            self._img_key, self._sub_key = img_key, sub_key
            self._mixin_key = derive_mixin_key(img_key, sub_key)
            self._updated_at = now
            logger.info("Refreshed WBI signing keys")
            return self._mixin_key

    def sign_params(self, params) -> list:
        """Return the signed, sorted parameter list including ``wts`` and ``w_rid``."""
        mixin_key = self.refresh()
        items = [(_strip_denied(str(k)), _strip_denied(str(v))) for k, v in params]
        items = [(k, v) for k, v in items if k not in ("wts", "w_rid")]
        items.append(("wts", str(int(self.clock()))))
        items.sort(key=lambda kv: kv[0])

        query = urlencode(items)
        w_rid = hashlib.md5((query + mixin_key).encode("utf-8")).hexdigest()
        items.append(("w_rid", w_rid))
        return items

    def sign(self, url: str) -> str:
        """Sign a URL's query string and return the signed URL."""
        parts = urlsplit(url)
        params = parse_qsl(parts.query, keep_blank_values=True)
        signed = self.sign_params(params)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(signed), parts.fragment))
