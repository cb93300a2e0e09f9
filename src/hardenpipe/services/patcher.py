"""Build definition patching service for HardenPipe."""

import json
import os
import shutil
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from hardenpipe.constants import DEFAULT_DOCKERFILE
from hardenpipe.errors import ConfigurationError, ToolError
from hardenpipe.errors_catalog import actionable_error

Instruction = Tuple[str, str, object]


@dataclass(frozen=True)
class PatchReport:
    definition_path: str
    removed: List[str]
    copied_assets: List[str]


def logical_lines(text: str) -> List[Tuple[str, str]]:
    """Groups physical lines into instructions.

    Returns ``(raw, logical)`` pairs where ``raw`` is the exact source text
    (line endings included) and ``logical`` the joined instruction.
    """
    groups: List[Tuple[str, str]] = []
    raw_parts: List[str] = []
    logical_parts: List[str] = []

    for physical in text.splitlines(keepends=True):
        content = physical.rstrip("\r\n")
        raw_parts.append(physical)
        if not logical_parts and content.lstrip().startswith("#"):
            groups.append(("".join(raw_parts), content.strip()))
            raw_parts = []
            continue
        if content.rstrip().endswith("\\"):
            logical_parts.append(content.rstrip()[:-1].strip())
            continue
        logical_parts.append(content.strip())
        groups.append(("".join(raw_parts), " ".join(part for part in logical_parts if part)))
        raw_parts = []
        logical_parts = []

    if raw_parts:
        groups.append(("".join(raw_parts), " ".join(part for part in logical_parts if part)))
    return groups


def parse_instruction(logical: str) -> Optional[Instruction]:
    text = logical.strip()
    if not text or text.startswith("#"):
        return None

    parts = text.split(None, 1)
    keyword = parts[0].upper()
    arguments = parts[1].strip() if len(parts) > 1 else ""

    if arguments.startswith("["):
        try:
            values = json.loads(arguments)
        except json.JSONDecodeError:
            values = None
        if isinstance(values, list) and all(isinstance(value, str) for value in values):
            return keyword, "exec", tuple(values)

    return keyword, "shell", " ".join(arguments.split())


class BuildDefinitionPatcher:
    """Removes the entrypoint override the embedding tool leaves behind.

    The tool copies the source definition verbatim and adds its own
    entrypoint; the source override must go or it replaces the agent.
    """

    def __init__(self, logger, definition_name: str = DEFAULT_DOCKERFILE):
        self.logger = logger
        self.definition_name = definition_name

    @staticmethod
    def directive_from_source(definition_path: str) -> Optional[str]:
        with open(definition_path, "r", encoding="utf-8", newline="") as file_obj:
            text = file_obj.read()

        directive = None
        for _, logical in logical_lines(text):
            instruction = parse_instruction(logical)
            if instruction and instruction[0] == "ENTRYPOINT":
                directive = logical
        return directive

    @staticmethod
    def assets_from_source(definition_path: str) -> List[str]:
        """Local COPY/ADD sources of the source definition, in order.

        Remote sources, ``--from`` stage copies, heredocs, globs and
        variable references are left out; only plain context paths remain.
        """
        with open(definition_path, "r", encoding="utf-8", newline="") as file_obj:
            text = file_obj.read()

        assets: List[str] = []
        for _, logical in logical_lines(text):
            instruction = parse_instruction(logical)
            if not instruction or instruction[0] not in ("COPY", "ADD"):
                continue
            _, form, arguments = instruction
            values = list(arguments) if form == "exec" else arguments.split()

            flags = [value for value in values if value.startswith("--")]
            if any(flag.startswith("--from") for flag in flags):
                continue
            values = [value for value in values if not value.startswith("--")]

            for source in values[:-1]:
                if source.startswith(("http://", "https://", "git@", "<<", "/")) or any(
                    marker in source for marker in ("*", "?", "[", "$")
                ):
                    continue
                source = os.path.normpath(source)
                if source == "." or source.startswith(".."):
                    continue
                if source not in assets:
                    assets.append(source)
        return assets

    def strip_directive(self, text: str, directive: Optional[str]) -> Tuple[str, List[str]]:
        target = parse_instruction(directive) if directive else None
        if target is None:
            return text, []

        kept: List[str] = []
        removed: List[str] = []
        for raw, logical in logical_lines(text):
            if parse_instruction(logical) == target:
                removed.append(logical)
                continue
            kept.append(raw)
        return "".join(kept), removed

    def patch(
        self,
        context_dir: str,
        output_dir: str,
        directive: Optional[str],
        source_dir: str = ".",
        assets: Sequence[str] = (),
    ) -> PatchReport:
        if os.path.abspath(context_dir) == os.path.abspath(output_dir):
            raise ValueError("Patch output must be a new directory; the input context is kept unchanged.")

        source_definition = os.path.join(context_dir, self.definition_name)
        if not os.path.isfile(source_definition):
            raise ToolError(
                actionable_error("PatchTargetMissing", path=context_dir), kind="PatchTargetMissing"
            )

        with open(source_definition, "r", encoding="utf-8", newline="") as file_obj:
            original = file_obj.read()

        if not any(
            (parse_instruction(logical) or ("",))[0] == "FROM" for _, logical in logical_lines(original)
        ):
            raise ToolError(
                actionable_error("PatchTargetMissing", path=source_definition), kind="PatchTargetMissing"
            )

        patched, removed = self.strip_directive(original, directive)
        if removed:
            self.logger.info("Removed conflicting directive: %s", "; ".join(removed))
        else:
            self.logger.info("Conflicting directive not present; build definition left as is.")

        shutil.copytree(context_dir, output_dir, dirs_exist_ok=True)
        definition_path = os.path.join(output_dir, self.definition_name)
        with open(definition_path, "w", encoding="utf-8", newline="") as file_obj:
            file_obj.write(patched)

        copied = self.copy_assets(source_dir, output_dir, assets)
        return PatchReport(definition_path=definition_path, removed=removed, copied_assets=copied)

    def copy_assets(self, source_dir: str, output_dir: str, assets: Sequence[str]) -> List[str]:
        copied: List[str] = []
        for asset in assets:
            source_path = os.path.join(source_dir, asset)
            target_path = os.path.join(output_dir, asset)
            if os.path.exists(target_path):
                self.logger.debug("Asset already present in build context: %s", asset)
                continue
            if not os.path.exists(source_path):
                raise ConfigurationError(
                    actionable_error("AssetMissing", path=source_path), kind="AssetMissing"
                )

            os.makedirs(os.path.dirname(target_path) or ".", exist_ok=True)
            if os.path.isdir(source_path):
                shutil.copytree(source_path, target_path)
            else:
                shutil.copy2(source_path, target_path)
            copied.append(asset)
            self.logger.info("Copied static asset %s into build context", asset)
        return copied
