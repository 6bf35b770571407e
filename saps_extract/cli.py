from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from saps_extract.config.settings import Settings
from saps_extract.image_source.base import ImageSource, StaticImageSource
from saps_extract.image_source.conversion_service import ConversionServiceImageSource
from saps_extract.llm_client.anthropic_client import AnthropicModelClient
from saps_extract.llm_client.base import ModelClient
from saps_extract.pipeline.cancellation import CancellationToken
from saps_extract.pipeline.fallback import CropDefaults
from saps_extract.pipeline.orchestrator import ExtractionPipelineOrchestrator
from saps_extract.pipeline.response_parser import NATIVE_ANCHOR
from saps_extract.pipeline.types import DocumentInput
from saps_extract.prompts.manager import PromptManager
from saps_extract.storage.artifacts import ArtifactsManager
from saps_extract.storage.repo import StorageRepo
from saps_extract.storage.sink import SqlitePersistenceSink
from saps_extract.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    InputError,
    classify_input_error,
)
from saps_extract.utils.logging import setup_logging


def build_model_client(settings: Settings) -> AnthropicModelClient:
    if not settings.anthropic_api_key:
        raise ValueError("ANTHROPIC_API_KEY is not configured")

    prompt_set = PromptManager(settings.resolved_prompts_root).load_prompt_set(
        prompt_name=settings.default_prompt_name,
        version=settings.default_prompt_version,
    )
    if prompt_set.response_anchor not in (None, NATIVE_ANCHOR):
        raise ValueError(
            f"Prompt {prompt_set.label} answers under "
            f"{prompt_set.response_anchor!r}, expected {NATIVE_ANCHOR!r}"
        )
    return AnthropicModelClient(
        api_key=settings.anthropic_api_key,
        prompt_set=prompt_set,
        model=settings.model,
        api_url=settings.api_url,
        api_version=settings.api_version,
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.request_timeout_seconds,
        connect_timeout_seconds=settings.connect_timeout_seconds,
        max_retries=settings.overload_max_retries,
        base_delay_seconds=settings.overload_base_delay_seconds,
    )


def build_orchestrator(
    settings: Settings,
    *,
    image_source: ImageSource,
    model_client: ModelClient,
    crop_defaults: CropDefaults | None = None,
    persist: bool = True,
) -> ExtractionPipelineOrchestrator:
    sink = None
    if persist:
        repo = StorageRepo(
            settings.resolved_sqlite_path,
            artifacts_manager=ArtifactsManager(settings.resolved_data_dir),
        )
        sink = SqlitePersistenceSink(repo)

    return ExtractionPipelineOrchestrator(
        image_source=image_source,
        model_client=model_client,
        crop_defaults=crop_defaults
        or CropDefaults.from_config(settings.crop_defaults_config),
        sink=sink,
        batch_size=settings.batch_size,
    )


def build_image_source(
    settings: Settings,
    *,
    document_ref: str,
    images_file: Path | None,
    cancellation: CancellationToken | None = None,
) -> ImageSource:
    if images_file is not None:
        lines = images_file.read_text(encoding="utf-8").splitlines()
        urls = [line.strip() for line in lines if line.strip()]
        return StaticImageSource({document_ref: urls})

    if not settings.conversion_service_url:
        raise ValueError(
            "Either --images-file or CONVERSION_SERVICE_URL must be provided"
        )
    return ConversionServiceImageSource(
        base_url=settings.conversion_service_url,
        api_key=settings.conversion_api_key,
        timeout_seconds=settings.conversion_timeout_seconds,
        max_retries=settings.conversion_max_retries,
        retry_backoff_seconds=settings.conversion_retry_backoff_seconds,
        poll_max_attempts=settings.conversion_poll_max_attempts,
        poll_interval_seconds=settings.conversion_poll_interval_seconds,
        cancellation=cancellation,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="saps-extract")
    parser.add_argument(
        "--env-file", type=str, default=".env", help="Path to .env file"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate-config")

    p_proc = subparsers.add_parser("process")
    p_proc.add_argument("--document-ref", required=True)
    p_proc.add_argument("--user-id", required=True)
    p_proc.add_argument("--file-name", required=True)
    p_proc.add_argument("--file-size", type=int, required=True)
    p_proc.add_argument("--mime-type", default=None)
    p_proc.add_argument(
        "--images-file",
        type=Path,
        default=None,
        help="Text file with one page image URL per line",
    )
    p_proc.add_argument(
        "--no-persist",
        action="store_true",
        help="Skip SQLite and artifact persistence",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = Settings(_env_file=args.env_file)
        crop_defaults = CropDefaults.from_config(settings.crop_defaults_config)
    except ValidationError as e:
        print(f"Config validation error:\n{e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level, settings.log_file)

    if args.command == "validate-config":
        print(
            f"Config is valid. {len(crop_defaults.crops)} crop price entries, "
            f"batch size {settings.batch_size}."
        )
        return 0

    cancellation = CancellationToken(
        deadline_seconds=settings.document_deadline_seconds
    )
    try:
        image_source = build_image_source(
            settings,
            document_ref=args.document_ref,
            images_file=args.images_file,
            cancellation=cancellation,
        )
        model_client = build_model_client(settings)
    except (OSError, ValueError) as e:
        print(f"Failed to set up pipeline: {e}", file=sys.stderr)
        return 1

    try:
        return _process(
            args,
            settings,
            image_source=image_source,
            model_client=model_client,
            crop_defaults=crop_defaults,
            cancellation=cancellation,
        )
    finally:
        model_client.close()


def _process(
    args: argparse.Namespace,
    settings: Settings,
    *,
    image_source: ImageSource,
    model_client: ModelClient,
    crop_defaults: CropDefaults,
    cancellation: CancellationToken,
) -> int:
    try:
        orchestrator = build_orchestrator(
            settings,
            image_source=image_source,
            model_client=model_client,
            crop_defaults=crop_defaults,
            persist=not args.no_persist,
        )
    except (OSError, ValueError) as e:
        print(f"Failed to set up pipeline: {e}", file=sys.stderr)
        return 1

    document = DocumentInput(
        document_ref=args.document_ref,
        user_id=args.user_id,
        file_name=args.file_name,
        file_size=args.file_size,
        mime_type=args.mime_type,
    )
    try:
        result = orchestrator.process_document(document, cancellation=cancellation)
    except InputError as e:
        code = classify_input_error(e)
        print(
            f"Invalid document [{code}]: {ERROR_FRIENDLY_MESSAGES[code]} {e}",
            file=sys.stderr,
        )
        return 2

    output = {
        "origin": result.origin,
        "exitStage": result.exit_stage.value,
        "responseArtifactUrl": result.response_artifact_url,
        "progress": result.progress.to_dict(),
        "record": result.record.to_dict(),
    }
    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
