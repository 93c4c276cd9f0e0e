#!/usr/bin/env python3
"""
Plan Fixer

Reads the error diagnostics of ``terraform plan -json`` and patches the
generated configuration files for the errors that have a known remedy.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

logger = logging.getLogger(__name__)


class PlanErrorType(Enum):
    """Plan errors by diagnostic summary"""
    MISSING_ATTRIBUTE_SEPARATOR = "Missing attribute separator"
    UNCONFIGURABLE_ATTRIBUTE = "Value for unconfigurable attribute"
    INVALID_OR_UNKNOWN_KEY = "Invalid or unknown key"
    UNSUPPORTED_ARGUMENT = "Unsupported argument"
    CONFLICTING_ARGUMENTS = "Conflicting configuration arguments"
    MISSING_REQUIRED_ARGUMENT = "Missing required argument"
    UNRECOGNIZED = ""

    @classmethod
    def from_summary(cls, summary: str) -> "PlanErrorType":
        for error_type in cls:
            if error_type.value and error_type.value == summary:
                return error_type
        return cls.UNRECOGNIZED


@dataclass
class PlanError:
    """One error diagnostic from the plan output"""
    summary: str
    detail: str = ""
    filename: Optional[str] = None
    start_line: int = 0
    end_line: int = 0
    context: str = ""
    code: str = ""

    @property
    def error_type(self) -> PlanErrorType:
        return PlanErrorType.from_summary(self.summary)

    @property
    def signature(self) -> Tuple[Optional[str], int, str, str]:
        return self.filename, self.start_line, self.summary, self.code

    def describe(self) -> str:
        location = f" ({self.filename}:{self.start_line})" if self.filename else ""
        detail = f": {self.detail}" if self.detail else ""
        return f"{self.summary}{location}{detail}"

    @classmethod
    def from_json(cls, message: Dict) -> "PlanError":
        diagnostic = message.get("diagnostic") or {}
        location = diagnostic.get("range") or {}
        snippet = diagnostic.get("snippet") or {}
        summary = diagnostic.get("summary") or message.get("@message", "")
        if summary.startswith("Error: "):
            summary = summary[len("Error: "):]

        return cls(
            summary=summary,
            detail=diagnostic.get("detail") or "",
            filename=location.get("filename"),
            start_line=(location.get("start") or {}).get("line", 0),
            end_line=(location.get("end") or {}).get("line", 0),
            context=snippet.get("context") or "",
            code=snippet.get("code") or "",
        )


def parse_plan_output(lines: Iterable[str]) -> List[PlanError]:
    """
    Error diagnostics of ``terraform plan -json``

    Each output line is a separate JSON message; lines that are not JSON
    are skipped.

    Returns:
        Errors ordered bottom up within each file, so that fixing one does
        not move the lines of the next
    """
    errors = []
    for line in lines:
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping plan output line: {line}")
            continue
        if message.get("@level") == "error":
            errors.append(PlanError.from_json(message))

    return sorted(errors, key=lambda e: (e.filename or "", -e.start_line))


class HclScript:
    """Line oriented view of one configuration file; line numbers start at 1"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.lines: List[str] = self.path.read_text(encoding="utf-8").splitlines() if self.path.exists() else []

    def _check(self, line_number: int):
        if line_number < 1 or line_number > len(self.lines):
            raise IndexError(f"Invalid line {line_number} in {self.path}")

    def __getitem__(self, line_number: int) -> str:
        self._check(line_number)
        return self.lines[line_number - 1]

    def __setitem__(self, line_number: int, text: str):
        self._check(line_number)
        self.lines[line_number - 1] = text

    def __len__(self) -> int:
        return len(self.lines)

    def remove_lines(self, line_numbers: Iterable[int]):
        for line_number in sorted(set(line_numbers), reverse=True):
            self._check(line_number)
            del self.lines[line_number - 1]

    def block_end(self, line_number: int) -> int:
        """Line of the brace or bracket closing the one opened on ``line_number``"""
        depth = 0
        for current in range(line_number, len(self.lines) + 1):
            text = self[current]
            depth += text.count("{") + text.count("[") - text.count("}") - text.count("]")
            if depth <= 0:
                return current
        raise IndexError(f"Block opened at line {line_number} of {self.path} is not closed")

    def save(self):
        self.path.write_text("\n".join(self.lines) + "\n", encoding="utf-8")


class PlanFixer:
    """
    Applies remedies for plan errors to the files of a workspace

    Args:
        workspace: Directory the plan ran in; diagnostic file names are relative to it
    """

    _BLOCK_START = re.compile(r"^\s*[\w\-]+\s*\{\s*$")
    _ARGUMENT_NAME = re.compile(r"^\s*([\w\-]+)\s*=")
    _UNQUOTED_KEY = re.compile(r"^(\s*)([^\"\s][^\s=]*)\s*=")
    _CONFLICT_DETAIL = re.compile(r"^\"([^\"]+)\": conflicts with (\S+)")

    def __init__(self, workspace: Union[str, Path]):
        self.workspace = Path(workspace)
        self.scripts: Dict[Path, HclScript] = {}
        self._removed: Set[Tuple[Optional[str], str, str]] = set()

    def fix_all(self, errors: Iterable[PlanError]) -> int:
        """
        Fix what can be fixed and save the touched files

        Returns:
            Number of errors fixed
        """
        self._removed.clear()
        fixed = 0
        for error in errors:
            if self.fix(error):
                fixed += 1
        self.save()
        return fixed

    def fix(self, error: PlanError) -> bool:
        """Apply the remedy for one error; True if the configuration changed or the error is gone"""
        handler = {
            PlanErrorType.MISSING_ATTRIBUTE_SEPARATOR: self._fix_missing_attribute_separator,
            PlanErrorType.UNCONFIGURABLE_ATTRIBUTE: self._remove_argument,
            PlanErrorType.INVALID_OR_UNKNOWN_KEY: self._remove_argument,
            PlanErrorType.UNSUPPORTED_ARGUMENT: self._remove_argument,
            PlanErrorType.CONFLICTING_ARGUMENTS: self._fix_conflicting_arguments,
            PlanErrorType.MISSING_REQUIRED_ARGUMENT: self._fix_missing_required_argument,
        }.get(error.error_type)

        if handler is None or error.filename is None or error.start_line < 1:
            logger.debug(f"No fix for plan error: {error.describe()}")
            return False

        try:
            return handler(self._script(error.filename), error)
        except IndexError as e:
            logger.warning(f"Cannot fix plan error {error.describe()}: {str(e)}")
            return False

    def save(self):
        for script in self.scripts.values():
            script.save()
            logger.debug(f"Saved {script.path}")
        self.scripts.clear()

    def _script(self, filename: str) -> HclScript:
        path = self.workspace / filename
        if path not in self.scripts:
            self.scripts[path] = HclScript(path)
        return self.scripts[path]

    def _fix_missing_attribute_separator(self, script: HclScript, error: PlanError) -> bool:
        """A map key with punctuation was written unquoted"""
        line = script[error.start_line]
        if not self._UNQUOTED_KEY.match(line):
            return False
        script[error.start_line] = self._UNQUOTED_KEY.sub(r'\1"\2" =', line, count=1)
        return True

    def _remove_argument(self, script: HclScript, error: PlanError) -> bool:
        """Remove the reported argument, or the whole block when a block is reported"""
        end_line = max(error.start_line, error.end_line)
        if script[error.start_line].rstrip().endswith(("{", "[")) and end_line == error.start_line:
            end_line = script.block_end(error.start_line)
        script.remove_lines(range(error.start_line, end_line + 1))
        logger.info(f"Removed {error.filename}:{error.start_line}: {error.summary}")
        return True

    def _fix_conflicting_arguments(self, script: HclScript, error: PlanError) -> bool:
        """
        Remove one argument of a conflicting pair

        Terraform reports the pair from both sides. Errors arrive bottom up,
        so the later argument goes and the report for the earlier one finds
        its counterpart already removed.
        """
        match = self._CONFLICT_DETAIL.match(error.detail)
        name_match = self._ARGUMENT_NAME.match(script[error.start_line])
        name = match.group(1) if match else (name_match.group(1) if name_match else None)
        if name is None:
            return False

        if match and (error.filename, error.context, match.group(2)) in self._removed:
            return True

        self._removed.add((error.filename, error.context, name))
        return self._remove_argument(script, error)

    def _fix_missing_required_argument(self, script: HclScript, error: PlanError) -> bool:
        """A nested block lacks a required argument: drop the block"""
        if not self._BLOCK_START.match(script[error.start_line]):
            return False
        script.remove_lines(range(error.start_line, script.block_end(error.start_line) + 1))
        logger.info(f"Removed block at {error.filename}:{error.start_line}: {error.detail or error.summary}")
        return True
