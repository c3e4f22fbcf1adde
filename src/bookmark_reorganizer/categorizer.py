import asyncio
import json
import random
import time
from dataclasses import dataclass, field

from .config import env_or_config
from .normalizer import DEFAULT_FALLBACK_CATEGORY, as_links, mapping_stats, normalize_categorization
from .sanitizer import parse_model_response

PROMPT_TEMPLATE = """You are an intelligent bookmark organizer.
Classify EACH of the following bookmarks into a thematic folder based on domain and/or keywords.
If a bookmark does not fit any clear category, put it under "{fallback}".

Strict rules:
- Use clear categories like: "News", "Music", "Entertainment", "Programming", "AI", "Search", "Games", "Education", "Business", "Technology", "Health", "Shopping", etc.
- If domain is AI-related (openai, chatgpt, perplexity, huggingface), use "AI".
- If it's music related (spotify, letras.mus.br, youtube-music), use "Music".
- If it's a game site (dofus, tibia, steam, minecraft), use "Games".
- If it's a search engine (google, bing, yahoo), use "Search".
- Include EVERY input bookmark exactly once in the output.
- Use the EXACT title strings provided in the input as object keys.
- Return ONLY a JSON object. Do NOT include any explanation or markdown fences.
- Do NOT use trailing commas.

Input bookmarks (JSON array):
{bookmarks}

Output JSON shape:
{{
  "Category": {{
    "Exact Input Title": "URL"
  }},
  "{fallback}": {{
    "...": "..."
  }}
}}

Answer only with valid JSON. Do not include explanations or any extra text."""


def require_int(value, field_name):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"Invalid value for '{field_name}': expected integer-like, got {type(value).__name__}")


def require_float(value, field_name):
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise ValueError(f"Invalid value for '{field_name}': expected float-like, got {type(value).__name__}")


@dataclass(frozen=True)
class CategorizationResult:
    mapping: dict
    parse_failed: bool = False
    provider: str = ""
    stats: dict = field(default_factory=dict)


def build_prompt(bookmarks, fallback_category=DEFAULT_FALLBACK_CATEGORY):
    payload = [{"title": link.title, "url": link.url} for link in bookmarks]
    return PROMPT_TEMPLATE.format(
        fallback=fallback_category,
        bookmarks=json.dumps(payload, indent=2, ensure_ascii=False),
    )


class BookmarkCategorizer:
    """Asks a generative model for a folder taxonomy and repairs whatever comes back.

    ``query_text`` is a blocking callable (prompt -> reply text or None); it runs
    on a worker thread so the event loop stays free while the model answers.
    """

    def __init__(
        self,
        query_text,
        provider_name,
        retries=None,
        retry_base_seconds=None,
        fallback_category=None,
    ):
        self.query_text = query_text
        self.provider_name = provider_name
        if retries is None:
            retries = env_or_config("QUERY_RETRIES", "categorizer.query_retries", 3)
        if retry_base_seconds is None:
            retry_base_seconds = env_or_config("QUERY_RETRY_BASE_SECONDS", "categorizer.query_retry_base_seconds", 1.25)
        self.query_retries = max(1, require_int(retries, "categorizer.query_retries"))
        self.query_retry_base_seconds = require_float(retry_base_seconds, "categorizer.query_retry_base_seconds")
        self.fallback_category = str(
            fallback_category
            or env_or_config("FALLBACK_CATEGORY", "categorizer.fallback_category", DEFAULT_FALLBACK_CATEGORY)
        ).strip() or DEFAULT_FALLBACK_CATEGORY
        self.stats = {}
        self.reset_stats()

    def reset_stats(self):
        self.stats = {
            "query_retry_warnings": 0,
            "query_failures": 0,
            "provider_errors": 0,
        }

    def increment_stat(self, key, amount=1):
        self.stats[key] = self.stats.get(key, 0) + amount

    def log(self, message):
        print(message, flush=True)

    def _query(self, prompt_text):
        try:
            return self.query_text(prompt_text)
        except Exception as exc:
            self.increment_stat("provider_errors")
            self.log(f"[warn] {self.provider_name} request raised {type(exc).__name__}: {exc}")
            return None

    def safe_query_with_retry(self, prompt_text, retries=None):
        attempts = retries if retries is not None else self.query_retries
        for attempt in range(attempts):
            result = self._query(prompt_text)
            if result:
                parsed = parse_model_response(result)
                if isinstance(parsed, dict):
                    return parsed
                snippet = result[:200].replace("\n", "\\n")
                if len(result) > 200:
                    snippet += f"... ({len(result)} chars total)"
                reason = f"no JSON object in response: {snippet}"
            else:
                reason = "empty or error response from provider"
            self.log(f"[warn] Retry {attempt + 1}/{attempts} failed: {reason}")
            self.increment_stat("query_retry_warnings")
            if attempt < attempts - 1:
                sleep_for = (self.query_retry_base_seconds * (2**attempt)) + random.uniform(0, 0.75)
                time.sleep(sleep_for)
        self.increment_stat("query_failures")
        return None

    def categorize_sync(self, bookmarks):
        links = as_links(bookmarks)
        self.reset_stats()
        if not links:
            mapping = normalize_categorization(None, links, self.fallback_category)
            return CategorizationResult(mapping=mapping, provider=self.provider_name, stats=self._summary(mapping, links))

        self.log(f"[start] Categorizing {len(links)} bookmark(s) with {self.provider_name}")
        candidate = self.safe_query_with_retry(build_prompt(links, self.fallback_category))
        parse_failed = candidate is None
        if parse_failed:
            self.log(f"[warn] No usable answer from {self.provider_name}; every bookmark goes to '{self.fallback_category}'.")
        mapping = normalize_categorization(candidate, links, self.fallback_category)
        stats = self._summary(mapping, links)
        self.log(
            f"[done] {stats['bookmarks']} bookmark(s) in {stats['folders']} folder(s), "
            f"{stats['fallback_bookmarks']} in '{self.fallback_category}'"
        )
        return CategorizationResult(mapping=mapping, parse_failed=parse_failed, provider=self.provider_name, stats=stats)

    def _summary(self, mapping, links):
        summary = dict(self.stats)
        summary.update(mapping_stats(mapping))
        summary["input_bookmarks"] = len(links)
        summary["fallback_bookmarks"] = len(mapping.get(self.fallback_category, {}))
        return summary

    async def categorize(self, bookmarks):
        return await asyncio.to_thread(self.categorize_sync, list(bookmarks))
