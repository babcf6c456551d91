"""
BookWeaver — Generation Service Client
======================================
Thin wrapper over LiteLLM exposing exactly what the pipelines consume:

    complete(system_prompt, user_prompt, **params)  → text
    generate_image(prompt, size)                    → image URL
    submit_batch(tasks)                             → job handle
    poll_status(job_handle)                         → pending | completed | failed
    fetch_results(job_handle)                       → [{task_id, response_text}]

No retries happen here. Every provider failure is wrapped into
``GenerationServiceError`` and left to the controller; re-running the
pipeline (which resumes from the checkpoint) is the retry mechanism.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import litellm

from bookweaver import config
from bookweaver.errors import GenerationServiceError

BATCH_PENDING = "pending"
BATCH_COMPLETED = "completed"
BATCH_FAILED = "failed"

_PROVIDER_STATUS = {
    "validating": BATCH_PENDING,
    "in_progress": BATCH_PENDING,
    "finalizing": BATCH_PENDING,
    "cancelling": BATCH_PENDING,
    "completed": BATCH_COMPLETED,
    "failed": BATCH_FAILED,
    "expired": BATCH_FAILED,
    "cancelled": BATCH_FAILED,
}


def _first_choice_text(response: Any) -> str | None:
    if not response or not getattr(response, "choices", None):
        return None
    try:
        return response.choices[0].message.content
    except (AttributeError, IndexError, KeyError):
        return None


class GenerationService:
    def __init__(
        self,
        model: str | None = None,
        image_model: str | None = None,
        api_key: str | None = None,
        timeout: int = config.LLM_TIMEOUT,
        batch_provider: str = config.BATCH_PROVIDER,
    ):
        self.model = model or config.get_model()
        self.image_model = image_model or config.IMAGE_MODEL
        self.api_key = api_key or config.get_api_key()
        self.timeout = timeout
        self.batch_provider = batch_provider

    # ──────────────────────────────────────────
    # TEXT
    # ──────────────────────────────────────────
    def complete(self, system_prompt: str, user_prompt: str, **params: Any) -> str:
        try:
            response = litellm.completion(
                model=self.model,
                timeout=self.timeout,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                api_key=self.api_key,
                **params,
            )
        except Exception as e:
            error_msg = str(e)
            print(f"[LLM] ❌ Completion failed ({type(e).__name__}): {error_msg[:200]}")
            if "401" in error_msg or "authentication" in error_msg.lower():
                print("[LLM] 💡 Authentication error - check your API key")
            elif "429" in error_msg or "rate limit" in error_msg.lower():
                print("[LLM] 💡 Rate limit - re-run later, progress is checkpointed")
            raise GenerationServiceError("completion", error_msg) from e

        content = _first_choice_text(response)
        if not content:
            raise GenerationServiceError("completion", "empty response from model")
        return content

    # ──────────────────────────────────────────
    # IMAGES
    # ──────────────────────────────────────────
    def generate_image(self, prompt: str, size: str = config.COVER_IMAGE_SIZE) -> str:
        try:
            response = litellm.image_generation(
                prompt=prompt,
                model=self.image_model,
                n=1,
                size=size,
                api_key=self.api_key,
                timeout=self.timeout,
            )
            url = response.data[0].url
        except Exception as e:
            print(f"[LLM] ❌ Image generation failed: {str(e)[:200]}")
            raise GenerationServiceError("image generation", str(e)) from e
        if not url:
            raise GenerationServiceError("image generation", "no image URL returned")
        return url

    # ──────────────────────────────────────────
    # BATCH
    # ──────────────────────────────────────────
    def submit_batch(self, tasks: List[Dict[str, Any]]) -> str:
        """Upload tasks as JSONL and create one batch job. Returns the job id."""
        payload = "\n".join(json.dumps(task, ensure_ascii=False) for task in tasks)
        try:
            batch_file = litellm.create_file(
                file=("batch_tasks.jsonl", payload.encode("utf-8")),
                purpose="batch",
                custom_llm_provider=self.batch_provider,
            )
            batch = litellm.create_batch(
                completion_window="24h",
                endpoint="/v1/chat/completions",
                input_file_id=batch_file.id,
                custom_llm_provider=self.batch_provider,
            )
        except Exception as e:
            raise GenerationServiceError("batch submit", str(e)) from e
        print(f"[LLM] 📦 Batch job submitted: {batch.id} ({len(tasks)} tasks)")
        return batch.id

    def poll_status(self, job_handle: str) -> str:
        try:
            batch = litellm.retrieve_batch(
                batch_id=job_handle, custom_llm_provider=self.batch_provider
            )
        except Exception as e:
            raise GenerationServiceError("batch status", str(e)) from e
        return _PROVIDER_STATUS.get(str(batch.status), BATCH_PENDING)

    def fetch_results(self, job_handle: str) -> List[Dict[str, str]]:
        try:
            batch = litellm.retrieve_batch(
                batch_id=job_handle, custom_llm_provider=self.batch_provider
            )
            if not batch.output_file_id:
                raise GenerationServiceError("batch results", "job has no output file")
            raw = litellm.file_content(
                file_id=batch.output_file_id,
                custom_llm_provider=self.batch_provider,
            )
        except GenerationServiceError:
            raise
        except Exception as e:
            raise GenerationServiceError("batch results", str(e)) from e
        return parse_batch_output(raw.content.decode("utf-8"))


def parse_batch_output(text: str) -> List[Dict[str, str]]:
    """Parse the provider's JSONL output into ``{task_id, response_text}`` records."""
    results = []
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise GenerationServiceError("batch results", f"corrupt output line {number}: {e}") from e
        if not isinstance(record, dict):
            raise GenerationServiceError("batch results", f"output line {number} is not a JSON object")
        body = ((record.get("response") or {}).get("body")) or {}
        try:
            response_text = body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            response_text = ""
        results.append({"task_id": record.get("custom_id", ""), "response_text": response_text})
    return results
