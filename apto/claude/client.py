import asyncio
import json
import logging
import tempfile
from pathlib import Path

from apto.config import settings
from apto.db.models import Attachment
from apto.services.receipt_encoder import MEDIA_TYPE_TO_SUFFIX

logger = logging.getLogger(__name__)

_api_client = None


def _get_api_client():
    global _api_client
    if _api_client is None:
        import anthropic

        _api_client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _api_client


def _use_sdk() -> bool:
    return settings.anthropic_api_key is not None


SDK_MODEL_MAP = {
    "sonnet": "claude-sonnet-4-5-20250929",
    "haiku": "claude-haiku-4-5-20251001",
    "opus": "claude-opus-4-5-20251101",
}


def _resolve_model() -> str:
    return SDK_MODEL_MAP.get(settings.claude_model, settings.claude_model)


# --- CLI backend ---


async def _run_claude_once(args: list[str], timeout: int) -> dict:
    proc = await asyncio.create_subprocess_exec(
        "claude",
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise TimeoutError(f"Claude CLI timed out after {timeout}s") from None

    stderr_text = stderr.decode().strip()
    if stderr_text:
        logger.debug("Claude CLI stderr: %s", stderr_text)

    if proc.returncode != 0:
        raise RuntimeError(f"Claude CLI error (rc={proc.returncode}): {stderr_text}")

    raw = stdout.decode()
    logger.debug("Claude CLI raw response: %s", raw[:2000])
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise RuntimeError(f"Claude CLI returned non-JSON: {raw[:500]}") from None


async def _ask_cli_structured(
    prompt: str,
    json_schema: dict,
    system_prompt: str = "",
    attachment: Attachment | None = None,
) -> dict:
    tmp_path: str | None = None
    try:
        if attachment:
            suffix = MEDIA_TYPE_TO_SUFFIX.get(attachment.media_type, ".bin")
            with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
                tmp_path = tmp.name
                tmp.write(attachment.raw_bytes())
            prompt = f"Read the file at {tmp_path} and then: {prompt}"

        args = [
            "-p",
            prompt,
            "--model",
            settings.claude_model,
            "--output-format",
            "json",
            "--json-schema",
            json.dumps(json_schema),
            "--no-session-persistence",
        ]
        if tmp_path:
            args.extend(
                [
                    "--max-turns",
                    "3",
                    "--allowedTools",
                    "Read",
                    "--dangerously-skip-permissions",
                ]
            )
        if system_prompt:
            args.extend(["--append-system-prompt", system_prompt])

        result = await _run_claude_once(args, settings.claude_timeout)
    finally:
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)

    structured = result.get("structured_output")
    if structured is None:
        raise RuntimeError(f"Claude returned no structured output. Raw result: {str(result.get('result', ''))[:300]}")
    if isinstance(structured, str):
        return json.loads(structured)
    return structured


# --- SDK backend ---


def _attachment_block(attachment: Attachment) -> dict:
    return {
        "type": "document" if attachment.is_pdf else "image",
        "source": {
            "type": "base64",
            "media_type": attachment.media_type,
            "data": attachment.data,
        },
    }


async def _ask_sdk_structured(
    prompt: str,
    json_schema: dict,
    system_prompt: str = "",
    attachment: Attachment | None = None,
) -> dict:
    client = _get_api_client()

    content: list[dict] = []
    if attachment:
        content.append(_attachment_block(attachment))
    content.append({"type": "text", "text": prompt})

    tool_name = "structured_output"
    tools = [
        {
            "name": tool_name,
            "description": "Return the structured output matching the schema.",
            "input_schema": json_schema,
        }
    ]

    kwargs: dict = {
        "model": _resolve_model(),
        "max_tokens": 1024,
        "messages": [{"role": "user", "content": content}],
        "tools": tools,
        "tool_choice": {"type": "tool", "name": tool_name},
        "timeout": settings.claude_timeout,
    }
    if system_prompt:
        kwargs["system"] = system_prompt

    response = await client.messages.create(**kwargs)

    for block in response.content:
        if block.type == "tool_use" and block.name == tool_name:
            return block.input

    raise RuntimeError(f"Claude SDK returned no tool_use block. Response: {str(response.content)[:300]}")


# --- Public interface ---


async def ask_claude_structured(
    prompt: str,
    json_schema: dict,
    system_prompt: str = "",
    attachment: Attachment | None = None,
) -> dict:
    if _use_sdk():
        return await _ask_sdk_structured(prompt, json_schema, system_prompt, attachment)
    return await _ask_cli_structured(prompt, json_schema, system_prompt, attachment)
