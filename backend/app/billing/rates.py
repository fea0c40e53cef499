"""Exchange rate lookup with schema tolerant extraction and a single fallback."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from http import client as http_client
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple
from urllib import error as urllib_error, request as urllib_request

from .config import BillingConfig
from .exceptions import RateUnavailable
from .models import RateQuote

logger = logging.getLogger(__name__)

Extractor = Callable[[Any], Optional[Decimal]]
JsonFetcher = Callable[[str, float], Any]

GENERIC_RATE_KEYS: Tuple[str, ...] = ("promedio", "venta", "price", "avg", "ask", "valor")
SECONDARY_RATE_KEYS: Tuple[str, ...] = ("venta", "promedio", "compra")


class RateSourceError(Exception):
    """A single rate source failed to produce a document."""


def parse_rate(value: Any) -> Optional[Decimal]:
    """Return ``value`` as a positive finite Decimal, or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            return None
        candidate: Any = text
    elif isinstance(value, (int, float, Decimal)):
        candidate = str(value) if not isinstance(value, Decimal) else value
    else:
        return None
    try:
        parsed = candidate if isinstance(candidate, Decimal) else Decimal(candidate)
    except InvalidOperation:
        return None
    if not parsed.is_finite() or parsed <= 0:
        return None
    return parsed


def _dig(document: Any, path: Sequence[str]) -> Any:
    node = document
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def path_extractor(*path: str) -> Extractor:
    """Extractor reading a fixed key path."""

    def extract(document: Any) -> Optional[Decimal]:
        return parse_rate(_dig(document, path))

    extract.__name__ = "path:" + ".".join(path)
    return extract


def _iter_children(node: Any) -> Iterable[Any]:
    if isinstance(node, dict):
        return node.values()
    if isinstance(node, list):
        return node
    return ()


def _find_preferred(node: Any, keys: Sequence[str]) -> Optional[Decimal]:
    if isinstance(node, dict):
        for key in keys:
            if key in node:
                value = parse_rate(node[key])
                if value is not None:
                    return value
    for child in _iter_children(node):
        if isinstance(child, (dict, list)):
            found = _find_preferred(child, keys)
            if found is not None:
                return found
    return None


def _find_any(node: Any) -> Optional[Decimal]:
    if not isinstance(node, (dict, list)):
        return parse_rate(node)
    for child in _iter_children(node):
        found = _find_any(child)
        if found is not None:
            return found
    return None


def recursive_extractor(*root: str, keys: Sequence[str] = GENERIC_RATE_KEYS) -> Extractor:
    """Search below ``root`` for preferred keys first, then any positive number."""

    def extract(document: Any) -> Optional[Decimal]:
        node = _dig(document, root) if root else document
        if node is None:
            return None
        if not isinstance(node, (dict, list)):
            return parse_rate(node)
        found = _find_preferred(node, keys)
        if found is not None:
            return found
        return _find_any(node)

    extract.__name__ = "recursive:" + (".".join(root) or "<root>")
    return extract


def primary_extractors() -> List[Extractor]:
    """Ordered extractors for the CriptoYa ``/api/dolar`` document."""

    return [
        path_extractor("cripto", "usdt", "ask"),
        path_extractor("cripto", "usdt", "price"),
        path_extractor("cripto", "usdc", "ask"),
        path_extractor("cripto", "usdc", "price"),
        path_extractor("cripto", "ccb", "ask"),
        path_extractor("cripto", "ccb", "price"),
        path_extractor("cripto"),
        recursive_extractor("cripto"),
    ]


def secondary_extractors() -> List[Extractor]:
    """Ordered extractors for the DolarApi ``/v1/dolares/cripto`` document."""

    return [path_extractor(key) for key in SECONDARY_RATE_KEYS]


def fetch_json(url: str, timeout: float) -> Any:
    """GET ``url`` and decode the JSON body, raising :class:`RateSourceError`."""

    try:
        req = urllib_request.Request(url, headers={"Accept": "application/json"}, method="GET")
        with urllib_request.urlopen(req, timeout=timeout) as response:
            status_code = getattr(response, "status", 200)
            if status_code < 200 or status_code >= 300:
                raise RateSourceError(f"HTTP {status_code}")
            body = response.read()
        return json.loads(body.decode("utf-8"))
    except RateSourceError:
        raise
    except urllib_error.HTTPError as exc:
        raise RateSourceError(f"HTTP {exc.code}") from exc
    except (urllib_error.URLError, http_client.HTTPException, TimeoutError, OSError) as exc:
        raise RateSourceError(f"request failed: {exc!r}") from exc
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RateSourceError("response body is not JSON") from exc
    except ValueError as exc:
        raise RateSourceError(f"invalid source url {url!r}: {exc}") from exc


@dataclass(frozen=True)
class RateSource:
    name: str
    url: str
    extractors: Tuple[Extractor, ...]

    def extract(self, document: Any) -> Optional[Decimal]:
        for extractor in self.extractors:
            value = extractor(document)
            if value is not None:
                logger.debug("Rate extracted from %s via %s", self.name, extractor.__name__)
                return value
        return None


@dataclass
class RateQuoter:
    """Tries each source in order and returns the first valid rate."""

    sources: Sequence[RateSource]
    timeout: float = 5.0
    fetcher: JsonFetcher = field(default=fetch_json)

    def get_rate(self) -> RateQuote:
        failures: List[str] = []
        for source in self.sources:
            try:
                document = self.fetcher(source.url, self.timeout)
            except RateSourceError as exc:
                reason = str(exc)
            else:
                value = source.extract(document)
                if value is not None:
                    return RateQuote(value=value, source=source.name)
                reason = "no valid rate in response"
            failures.append(f"{source.name}: {reason}")
            logger.warning(
                "Exchange rate source failed",
                extra={"rate_source": source.name, "rate_error": reason},
            )
        raise RateUnavailable(sources=failures)


def create_rate_quoter(config: BillingConfig, *, fetcher: Optional[JsonFetcher] = None) -> RateQuoter:
    sources = [
        RateSource(name="criptoya", url=config.fx_primary_url, extractors=tuple(primary_extractors())),
        RateSource(name="dolarapi", url=config.fx_secondary_url, extractors=tuple(secondary_extractors())),
    ]
    return RateQuoter(sources=sources, timeout=config.fx_timeout_seconds, fetcher=fetcher or fetch_json)


__all__ = [
    "RateQuoter",
    "RateSource",
    "RateSourceError",
    "create_rate_quoter",
    "fetch_json",
    "parse_rate",
    "path_extractor",
    "primary_extractors",
    "recursive_extractor",
    "secondary_extractors",
]
