"""Web search: DuckDuckGo (free, default) or SerpAPI (when a key is set)."""

import time
from typing import Optional

import requests
from ddgs import DDGS


class WebOpsError(Exception):
    pass


class WebSearch:
    """Search via SerpAPI's Google engine when a key is configured, DuckDuckGo otherwise."""

    SERPAPI_URL = "https://serpapi.com/search.json"
    TIMEOUT = 30
    MAX_SNIPPET = 500

    def __init__(self, serpapi_key: Optional[str] = None, max_results: int = 5,
                 language: str = "en"):
        self.serpapi_key = serpapi_key
        self.max_results = max_results
        self.language = language
        self._session: Optional[requests.Session] = None

    @property
    def backend(self) -> str:
        return "serpapi" if self.serpapi_key else "duckduckgo"

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"Accept": "application/json"})
        return self._session

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def search(self, query: str, max_results: Optional[int] = None) -> str:
        query = (query or "").strip()
        if not query:
            raise WebOpsError("Empty search query")
        limit = max_results or self.max_results
        if self.serpapi_key:
            return self._search_serpapi(query, limit)
        return self._search_ddg(query, limit)

    # ── Backends ──

    def _search_ddg(self, query: str, max_results: int) -> str:
        """DuckDuckGo search, free, no API key, with retry."""
        last_exc: Optional[Exception] = None
        for attempt in range(3):
            try:
                results = list(DDGS().text(query, max_results=max_results))
                break
            except Exception as e:
                last_exc = e
                if attempt < 2:
                    time.sleep(2 ** attempt)
        else:
            raise WebOpsError(f"DuckDuckGo search failed: {last_exc}")
        return self._format_ddg_results(query, results)

    def _search_serpapi(self, query: str, max_results: int) -> str:
        params = {
            "q": query,
            "api_key": self.serpapi_key,
            "engine": "google",
            "google_domain": "google.com",
            "gl": "us",
            "hl": self.language,
        }
        try:
            resp = self._get_session().get(self.SERPAPI_URL, params=params, timeout=self.TIMEOUT)
        except requests.RequestException as e:
            raise WebOpsError(f"SerpAPI request failed: {e}")
        if not resp.ok:
            raise WebOpsError(f"SerpAPI error ({resp.status_code}): {resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError:
            raise WebOpsError("SerpAPI returned invalid JSON")
        return self._format_serpapi_results(query, data, max_results)

    # ── Formatters ──

    @classmethod
    def _clip(cls, text: str) -> str:
        if len(text) > cls.MAX_SNIPPET:
            return text[:cls.MAX_SNIPPET] + "..."
        return text

    @classmethod
    def _format_ddg_results(cls, query: str, results: list) -> str:
        lines = [f"Search: {query}\n"]
        if not results:
            lines.append("No results found.")
            return "\n".join(lines)
        for i, r in enumerate(results, 1):
            lines.append(f"{i}. [{r.get('title', '')}]({r.get('href', '')})")
            body = cls._clip(r.get("body", ""))
            if body:
                lines.append(f"   {body}\n")
        return "\n".join(lines)

    @classmethod
    def _format_serpapi_results(cls, query: str, data: dict, max_results: int) -> str:
        parts = []
        answer_box = data.get("answer_box") or {}
        if answer_box.get("answer"):
            parts.append(f"Direct answer: {answer_box['answer']}\n")
        elif answer_box.get("snippet"):
            parts.append(f"Featured snippet: {answer_box['snippet']}\n")

        knowledge = data.get("knowledge_graph") or {}
        if knowledge.get("description"):
            parts.append(f"Overview: {knowledge['description']}\n")

        organic = data.get("organic_results") or []
        if organic:
            parts.append("Search results:")
            for i, item in enumerate(organic[:max_results], 1):
                parts.append(f"{i}. [{item.get('title', '')}]({item.get('link', '')})")
                snippet = cls._clip(item.get("snippet", ""))
                if snippet:
                    parts.append(f"   {snippet}")
                parts.append("")

        if not parts:
            return f'No relevant results found for "{query}".'
        return "\n".join(parts).rstrip() + "\n"
