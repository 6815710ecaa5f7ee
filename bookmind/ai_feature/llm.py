import logging
from typing import Optional, Protocol

from openai import AsyncOpenAI

from bookmind.ai_feature.intent import QueryType
from bookmind.core.config import settings


class LanguageModel(Protocol):
    async def interpret(self, question: str, context: str) -> str: ...

    async def explain(self, question: str, rows_json: str) -> str: ...

    async def recommend(self, prompt: str) -> str: ...

INTERPRET_PROMPT = f"""You translate questions about a book library into a JSON query.

Reply with JSON only, no prose, in exactly this shape:
{{"queryType": "<TYPE>", "parameters": {{"limit": <int or null>, "genre": <string or null>, "status": <string or null>}}}}

Allowed queryType values:
- {QueryType.USER_WITH_MOST_BOOKS.value}: which users own the most books (admin only)
- {QueryType.MOST_POPULAR_BOOK.value}: books most often being read or finished across users (admin only)
- {QueryType.EXPENSIVE_BOOKS.value}: most expensive books, "limit" = how many (default 5)
- {QueryType.BOOKS_BY_GENRE.value}: books in a genre, "genre" required
- {QueryType.BOOKS_BY_STATUS.value}: books with a reading status, "status" one of NotStarted, Reading, Completed
- {QueryType.USER_STATISTICS.value}: summary of the user's own collection
- {QueryType.MY_BOOK_COUNT.value}: how many books the user has
- {QueryType.CURRENTLY_READING.value}: books the user is reading right now
- {QueryType.COMMON_GENRE.value}: the user's most common genre
- {QueryType.GENERAL_STATISTICS.value}: library-wide statistics (admin only)

Pick the closest type. Never invent a type that is not in this list."""

EXPLAIN_PROMPT = """You are a friendly library assistant.
Answer the user's question in two or three sentences using ONLY the data provided.
If the data is empty, say that nothing matched. Do not mention JSON or queries."""

RECOMMEND_PROMPT = "You are a smart book recommendation engine. Reply with JSON only."


class OpenAiLanguageModel:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = settings.OPENAI_MODEL,
        temperature: float = settings.OPENAI_TEMPERATURE,
        timeout: float = settings.OPENAI_TIMEOUT_SECONDS,
    ):
        self.client = client or AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=timeout)
        self.model = model
        self.temperature = temperature

    async def _complete(self, system_prompt: str, user_content: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
        )
        return (response.choices[0].message.content or "").strip()

    async def interpret(self, question: str, context: str) -> str:
        text = await self._complete(INTERPRET_PROMPT, f"Context: {context}\nQuestion: {question}")
        logging.info(f"Model interpreted question as: {text}")
        return text

    async def explain(self, question: str, rows_json: str) -> str:
        return await self._complete(EXPLAIN_PROMPT, f"Question: {question}\nData: {rows_json}")

    async def recommend(self, prompt: str) -> str:
        return await self._complete(RECOMMEND_PROMPT, prompt)


_language_model: Optional[OpenAiLanguageModel] = None


def get_language_model() -> LanguageModel:
    global _language_model
    if _language_model is None:
        _language_model = OpenAiLanguageModel()
    return _language_model
