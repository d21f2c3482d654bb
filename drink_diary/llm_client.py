import logging
import re
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class PolishError(RuntimeError):
    pass


#----------text polish---------------

SYSTEM_PROMPT = "\n".join([
    "You proofread a home-brewing journal.",
    "Allowed:",
    "- fix spelling, punctuation and spacing;",
    "- lightly structure the text as a short list of the original facts when it helps.",
    "Forbidden:",
    "- adding advice, recommendations, conclusions or warnings;",
    "- adding new facts, ingredients, actions or plans.",
    "Answer in the language of the entry, plain text only, no Markdown.",
])


def _sanitize_llm_text(out: str) -> str:
    """Remove assistant-y prefaces and unwrap code fences/quotes."""
    if not out:
        return ""
    s = out.strip()
    # Prefer content inside triple backticks if present
    m = re.search(r"```(?:\w+)?\s*([\s\S]*?)```", s)
    if m and m.group(1).strip():
        s = m.group(1).strip()
    # Drop common preface lines like "Here you go:", "Corrected entry:", etc.
    lines = [ln.rstrip() for ln in s.splitlines()]
    while lines:
        head = lines[0].strip()
        if not head:
            lines.pop(0)
            continue
        low = head.lower().rstrip(":")
        boiler = (
            "here you go" in low or
            "here is" in low or
            "here's" in low or
            "corrected entry" in low or
            "edited version" in low or
            "revised version" in low
        )
        if boiler and len(head) <= 120:
            lines.pop(0)
            continue
        break
    s = "\n".join(lines).strip()
    # Unwrap matching surrounding quotes
    if (s.startswith('"') and s.endswith('"')) or (s.startswith("“") and s.endswith("”")) or (s.startswith("'") and s.endswith("'")):
        inner = s[1:-1].strip()
        if inner:
            s = inner
    return s


def cleanup_markdown(text: str) -> str:
    """Strip the Markdown the model sometimes adds despite the prompt."""
    s = (text or "").replace("```", "")
    s = re.sub(r"^#{1,6}\s*", "", s, flags=re.M)
    s = re.sub(r"\*\*(.*?)\*\*", r"\1", s)
    s = re.sub(r"__(.*?)__", r"\1", s)
    s = re.sub(r"`([^`]+)`", r"\1", s)
    s = re.sub(r"\[(.*?)\]\((.*?)\)", r"\1 (\2)", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


class TextPolisher:
    """Optional cleanup collaborator over an OpenAI-compatible chat API.

    Disabled without an API key. `polish` never raises: any failure returns
    None and the caller keeps the raw text.
    """

    def __init__(self, api_key: Optional[str], base_url: str, model: str, *, timeout: float = 60.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = (api_key or "").strip() or None
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.api_key is not None

    async def _complete(self, subject_name: str, text: str) -> str:
        payload = {
            "model": self.model,
            "temperature": 0.1,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": "\n".join([
                        f"Drink: {subject_name}",
                        "Edit the entry carefully without expanding its meaning and without recommendations.",
                        "Entry text:",
                        text,
                    ]),
                },
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
                r.raise_for_status()
                data = r.json()
        except Exception as e:
            raise PolishError(f"Polish request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise PolishError(f"Unexpected polish response: {data!r}") from e
        if content is not None and not isinstance(content, str):
            raise PolishError(f"Polish content is not text: {content!r}")
        out = (content or "").strip()
        if not out:
            raise PolishError("Empty response from polish service.")
        return out

    async def polish(self, subject_name: str, text: str) -> Optional[str]:
        if not self.enabled or not (text or "").strip():
            return None
        try:
            out = await self._complete(subject_name, text)
        except PolishError as e:
            logger.warning("Text polish failed, keeping raw text: %s", e)
            return None
        cleaned = cleanup_markdown(_sanitize_llm_text(out))
        return cleaned or None
