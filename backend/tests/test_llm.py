from __future__ import annotations

import json
from types import SimpleNamespace
from unittest import TestCase
from unittest.mock import patch

from bookweaver.errors import GenerationServiceError
from bookweaver.llm import GenerationService, parse_batch_output


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class CompleteTests(TestCase):
    def setUp(self):
        self.service = GenerationService(model="openai/gpt-test", api_key="sk-test", timeout=30)

    @patch("bookweaver.llm.litellm.completion")
    def test_returns_first_choice_text(self, completion):
        completion.return_value = _completion("A page.")

        text = self.service.complete("system", "user", temperature=0.7, max_tokens=50)

        self.assertEqual(text, "A page.")
        kwargs = completion.call_args.kwargs
        self.assertEqual(kwargs["model"], "openai/gpt-test")
        self.assertEqual(kwargs["timeout"], 30)
        self.assertEqual(kwargs["max_tokens"], 50)
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": "system"})
        self.assertEqual(kwargs["messages"][1], {"role": "user", "content": "user"})

    @patch("bookweaver.llm.litellm.completion")
    def test_empty_response_is_an_error(self, completion):
        completion.return_value = _completion("")
        with self.assertRaises(GenerationServiceError):
            self.service.complete("system", "user")

    @patch("bookweaver.llm.litellm.completion", side_effect=RuntimeError("429 rate limit"))
    def test_provider_errors_are_wrapped(self, _completion_mock):
        with self.assertRaises(GenerationServiceError) as ctx:
            self.service.complete("system", "user")
        self.assertEqual(ctx.exception.operation, "completion")
        self.assertIn("429", str(ctx.exception))


class ImageTests(TestCase):
    @patch("bookweaver.llm.litellm.image_generation")
    def test_returns_image_url(self, image_generation):
        image_generation.return_value = SimpleNamespace(data=[SimpleNamespace(url="https://img/cover.png")])
        service = GenerationService(model="m", image_model="dall-e-3", api_key="k")

        self.assertEqual(service.generate_image("a cover", "1024x1024"), "https://img/cover.png")
        self.assertEqual(image_generation.call_args.kwargs["size"], "1024x1024")
        self.assertEqual(image_generation.call_args.kwargs["model"], "dall-e-3")


class BatchTests(TestCase):
    def setUp(self):
        self.service = GenerationService(model="m", api_key="k", batch_provider="openai")

    @patch("bookweaver.llm.litellm.create_batch")
    @patch("bookweaver.llm.litellm.create_file")
    def test_submit_uploads_jsonl_and_creates_job(self, create_file, create_batch):
        create_file.return_value = SimpleNamespace(id="file-1")
        create_batch.return_value = SimpleNamespace(id="batch-1")
        tasks = [{"custom_id": "chapter-1"}, {"custom_id": "chapter-2"}]

        self.assertEqual(self.service.submit_batch(tasks), "batch-1")

        filename, payload = create_file.call_args.kwargs["file"]
        self.assertTrue(filename.endswith(".jsonl"))
        self.assertEqual([json.loads(line) for line in payload.decode("utf-8").splitlines()], tasks)
        self.assertEqual(create_file.call_args.kwargs["purpose"], "batch")
        self.assertEqual(create_batch.call_args.kwargs["input_file_id"], "file-1")
        self.assertEqual(create_batch.call_args.kwargs["endpoint"], "/v1/chat/completions")

    @patch("bookweaver.llm.litellm.retrieve_batch")
    def test_provider_statuses_are_normalised(self, retrieve_batch):
        expected = {
            "validating": "pending",
            "in_progress": "pending",
            "finalizing": "pending",
            "completed": "completed",
            "failed": "failed",
            "expired": "failed",
            "cancelled": "failed",
        }
        for provider_status, status in expected.items():
            retrieve_batch.return_value = SimpleNamespace(status=provider_status)
            self.assertEqual(self.service.poll_status("batch-1"), status, provider_status)

    @patch("bookweaver.llm.litellm.file_content")
    @patch("bookweaver.llm.litellm.retrieve_batch")
    def test_fetch_results_reads_output_file(self, retrieve_batch, file_content):
        retrieve_batch.return_value = SimpleNamespace(status="completed", output_file_id="file-out")
        line = {
            "custom_id": "chapter-1",
            "response": {"body": {"choices": [{"message": {"content": "Chapter one"}}]}},
        }
        file_content.return_value = SimpleNamespace(content=(json.dumps(line) + "\n").encode("utf-8"))

        results = self.service.fetch_results("batch-1")

        self.assertEqual(results, [{"task_id": "chapter-1", "response_text": "Chapter one"}])
        self.assertEqual(file_content.call_args.kwargs["file_id"], "file-out")

    @patch("bookweaver.llm.litellm.retrieve_batch")
    def test_fetch_results_without_output_file_is_an_error(self, retrieve_batch):
        retrieve_batch.return_value = SimpleNamespace(status="completed", output_file_id=None)
        with self.assertRaises(GenerationServiceError):
            self.service.fetch_results("batch-1")


class ParseBatchOutputTests(TestCase):
    def test_errored_lines_have_empty_text(self):
        text = "\n".join(
            [
                json.dumps({"custom_id": "chapter-1", "response": None, "error": {"message": "boom"}}),
                "",
                json.dumps({"custom_id": "chapter-2", "response": {"body": {"choices": []}}}),
            ]
        )
        self.assertEqual(
            parse_batch_output(text),
            [
                {"task_id": "chapter-1", "response_text": ""},
                {"task_id": "chapter-2", "response_text": ""},
            ],
        )

    def test_corrupt_line_is_a_service_error(self):
        text = json.dumps({"custom_id": "chapter-1", "response": None}) + "\n{not json"
        with self.assertRaises(GenerationServiceError) as ctx:
            parse_batch_output(text)
        self.assertEqual(ctx.exception.operation, "batch results")
        self.assertIn("line 2", str(ctx.exception))

    @patch("bookweaver.llm.litellm.file_content")
    @patch("bookweaver.llm.litellm.retrieve_batch")
    def test_fetch_results_with_corrupt_output_is_a_service_error(self, retrieve_batch, file_content):
        retrieve_batch.return_value = SimpleNamespace(status="completed", output_file_id="file-out")
        file_content.return_value = SimpleNamespace(content=b"truncated{")

        with self.assertRaises(GenerationServiceError):
            GenerationService(model="m", api_key="k").fetch_results("batch-1")
