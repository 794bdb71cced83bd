"""Inscription oracle client.

An ``ord`` explorer server renders ``/output/<txid>:<vout>`` pages; the page of
an output that carries an inscription mentions it. The oracle treats the
presence of :data:`INSCRIPTION_MARKER` in that body as "holds an inscription".
There is no local fallback: an output the oracle cannot vouch for must never
be spent as ordinary payment, so every transport or HTTP failure is fatal.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable

import requests
from requests import RequestException

from .model import OutPoint

logger = logging.getLogger(__name__)

INSCRIPTION_MARKER = "inscription"


class OracleError(RuntimeError):
    """Raised when the inscription oracle cannot classify an output."""


class InscriptionOracle:
    """Classify outputs as inscription holders via an ``ord`` explorer.

    Results are cached per instance, so one coin-selection pass sees a
    consistent answer for every outpoint even if it asks twice. Call
    :meth:`reset` (or build a new oracle) to start a fresh pass.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 30,
    ) -> None:
        if not base_url:
            raise ValueError("oracle base URL is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._cache: Dict[OutPoint, bool] = {}

    def output_url(self, outpoint: OutPoint) -> str:
        return f"{self.base_url}/output/{outpoint.txid}:{outpoint.vout}"

    def is_inscription(self, outpoint: OutPoint) -> bool:
        cached = self._cache.get(outpoint)
        if cached is not None:
            return cached

        url = self.output_url(outpoint)
        logger.debug("Querying inscription oracle %s", url)
        try:
            response = self._session.get(url, timeout=self.timeout)
        except RequestException as exc:
            raise OracleError(f"Inscription oracle unreachable for {outpoint}: {exc}") from exc
        if not response.ok:
            raise OracleError(
                f"Inscription oracle returned HTTP {response.status_code} for {outpoint}; "
                "refusing to treat the output as spendable"
            )

        holds_inscription = INSCRIPTION_MARKER in response.text
        if holds_inscription:
            logger.info("Output %s holds an inscription; excluding it from payment", outpoint)
        self._cache[outpoint] = holds_inscription
        return holds_inscription

    def classify(self, outpoints: Iterable[OutPoint]) -> Dict[OutPoint, bool]:
        """Classify a batch of outpoints, querying each distinct one once."""

        return {outpoint: self.is_inscription(outpoint) for outpoint in outpoints}

    def reset(self) -> None:
        self._cache.clear()
