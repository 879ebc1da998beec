from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

import requests


class BackendClient:
    """Lightweight helper for the managed backend's PostgREST-style API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or None
        self.access_token = access_token or None
        self.timeout = timeout
        self._session = session or requests.Session()

    def _build_url(self, table: str) -> str:
        return urljoin(f"{self.base_url}/", f"rest/v1/{table.lstrip('/')}")

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        bearer = self.access_token or self.api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Any] = None,
        payload: Optional[Any] = None,
        prefer: Optional[str] = None,
    ) -> Any:
        response = self._session.request(
            method,
            self._build_url(table),
            params=params,
            json=payload,
            headers=self._headers(prefer),
            timeout=self.timeout,
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        or_filter: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = [("select", "*")]
        if filters:
            self._apply_filters(params, filters)
        if or_filter:
            params.append(("or", f"({or_filter})"))
        if order:
            params.append(("order", order))
        return self._request("GET", table, params=params) or []

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._request("POST", table, payload=row, prefer="return=representation")
        if not rows:
            raise ValueError(f"Backend returned no row for insert into {table}.")
        return rows[0]

    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> None:
        params: List[Tuple[str, str]] = []
        self._apply_filters(params, filters)
        self._request("PATCH", table, params=params, payload=values, prefer="return=minimal")

    @staticmethod
    def _apply_filters(params: List[Tuple[str, str]], filters: Dict[str, Any]) -> None:
        """Translate ``{"date": {"gte": x}}`` / ``{"user_id": y}`` into query operators."""
        for column, value in filters.items():
            if isinstance(value, dict):
                for operator, operand in value.items():
                    params.append((column, f"{operator}.{_format_operand(operand)}"))
            else:
                params.append((column, f"eq.{_format_operand(value)}"))


def _format_operand(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return "(" + ",".join(str(item) for item in value) + ")"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def or_equals(*clauses: Sequence[Tuple[str, Any]]) -> str:
    """Build an ``or`` expression from groups of ``(column, value)`` equalities."""
    parts = []
    for clause in clauses:
        terms = [f"{column}.eq.{_format_operand(value)}" for column, value in clause]
        parts.append(terms[0] if len(terms) == 1 else f"and({','.join(terms)})")
    return ",".join(parts)


__all__ = ["BackendClient", "or_equals"]
