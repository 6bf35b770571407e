from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

VERSION_RE = re.compile(r"^v(\d{3})$")
LATEST_VERSION = "latest"


@dataclass(frozen=True, slots=True)
class PromptSet:
    prompt_name: str
    version: str
    system_prompt_text: str
    instructions_text: str
    meta: dict[str, Any]
    prompt_dir: Path

    @property
    def label(self) -> str:
        return f"{self.prompt_name}/{self.version}"

    @property
    def response_anchor(self) -> str | None:
        """Top-level key the instructions ask the model to answer under."""
        anchor = self.meta.get("response_anchor")
        return str(anchor) if anchor else None


class PromptManager:
    """Extraction prompts stored as ``<root>/<name>/vNNN/`` directories."""

    def __init__(self, prompts_root: Path | str) -> None:
        self.prompts_root = Path(prompts_root)

    def list_prompt_names(self) -> list[str]:
        if not self.prompts_root.is_dir():
            return []
        return sorted(
            child.name
            for child in self.prompts_root.iterdir()
            if child.is_dir()
            and not child.name.startswith("__")
            and self.list_versions(child.name)
        )

    def list_versions(self, prompt_name: str) -> list[str]:
        prompt_dir = self.prompts_root / prompt_name
        if not prompt_dir.is_dir():
            return []
        versions = [
            child.name
            for child in prompt_dir.iterdir()
            if child.is_dir() and VERSION_RE.match(child.name)
        ]
        return sorted(versions, key=_version_to_int)

    def latest_version(self, prompt_name: str) -> str:
        versions = self.list_versions(prompt_name)
        if not versions:
            raise FileNotFoundError(f"No versions found for prompt: {prompt_name}")
        return versions[-1]

    def resolve_version(self, prompt_name: str, version: str) -> str:
        if version == LATEST_VERSION:
            return self.latest_version(prompt_name)
        if not VERSION_RE.match(version):
            raise ValueError(f"Invalid prompt version format: {version}")
        return version

    def load_prompt_set(
        self,
        *,
        prompt_name: str,
        version: str = LATEST_VERSION,
    ) -> PromptSet:
        resolved = self.resolve_version(prompt_name, version)
        prompt_dir = self.prompts_root / prompt_name / resolved

        prompt_set = PromptSet(
            prompt_name=prompt_name,
            version=resolved,
            system_prompt_text=_read_prompt_text(prompt_dir / "system_prompt.txt"),
            instructions_text=_read_prompt_text(prompt_dir / "instructions.txt"),
            meta=_read_meta(prompt_dir / "meta.yaml"),
            prompt_dir=prompt_dir,
        )

        # The parser keys its native strategy on this anchor.
        anchor = prompt_set.response_anchor
        if anchor and anchor not in prompt_set.instructions_text:
            raise ValueError(
                f"Prompt {prompt_set.label} declares response anchor {anchor!r} "
                "but its instructions never mention it"
            )
        return prompt_set


def _read_prompt_text(path: Path) -> str:
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        raise ValueError(f"Prompt file is empty: {path}")
    return text


def _read_meta(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    parsed = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(parsed, dict):
        raise ValueError(f"Prompt meta must contain object root: {path}")
    return parsed


def _version_to_int(version: str) -> int:
    match = VERSION_RE.match(version)
    if match is None:
        raise ValueError(f"Invalid version format: {version}")
    return int(match.group(1))
