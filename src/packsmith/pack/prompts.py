"""
Prompt execution for pack configuration.

Packs declare prompts whose answers are substituted into templates and
copied files (`__KEY__` placeholders) and passed to configure scripts as
`RESOLVED_<KEY>` environment variables.

Prompt types:
    - fileDetect: match glob patterns against the project directory
    - input: free text with an optional default
    - select: one value from a fixed list of options
    - script: stdout of a trusted shell command run in the project directory

Design Decisions:
    - Answers come from a PromptAnswerer, so the engine never touches the
      terminal; the CLI supplies an interactive answerer, tests a static one
    - input/select keys declared by two or more packs are asked once
    - PROJECT_DIR_NAME and REPO_NAME are always available
"""

import fnmatch
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from packsmith.errors import CommandNotFoundError, CommandTimeoutError, PacksmithError, PromptError
from packsmith.pack.manifest import Manifest, PromptDefinition, PromptOption, PromptType
from packsmith.runner import CommandRunner

logger = logging.getLogger(__name__)

SHAREABLE_TYPES = frozenset({PromptType.INPUT, PromptType.SELECT})


# =============================================================================
# Answer providers
# =============================================================================


class PromptAnswerer(ABC):
    """Source of answers for input and select prompts."""

    @abstractmethod
    def ask_input(self, key: str, label: str, default: str | None) -> str:
        """Return free-text input for `key` (empty string for no answer)."""
        ...

    @abstractmethod
    def ask_select(self, key: str, label: str, options: Sequence[PromptOption], default: str | None) -> str:
        """Return the value of one of `options`."""
        ...


class StaticAnswerer(PromptAnswerer):
    """
    Answer prompts from a fixed mapping.

    Falls back to the prompt default, then to the first option.

    Example:
        answerer = StaticAnswerer({"BRANCH_PREFIX": "feature"})
    """

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values = dict(values or {})
        self.asked: list[str] = []

    def ask_input(self, key: str, label: str, default: str | None) -> str:
        self.asked.append(key)
        if key in self.values:
            return self.values[key]
        return default or ""

    def ask_select(self, key: str, label: str, options: Sequence[PromptOption], default: str | None) -> str:
        self.asked.append(key)
        if key in self.values:
            return self.values[key]
        if default is not None:
            return default
        return options[0].value if options else ""


# =============================================================================
# Executor
# =============================================================================


def detect_files(patterns: Sequence[str], directory: Path) -> list[str]:
    """Sorted names of non-hidden entries in `directory` matching any pattern."""
    try:
        names = [p.name for p in directory.iterdir() if not p.name.startswith(".")]
    except OSError:
        return []
    return sorted({
        name for name in names
        if any(fnmatch.fnmatch(name, pattern) for pattern in patterns)
    })


class PromptExecutor:
    """
    Resolve a pack's prompts to values.

    Example:
        executor = PromptExecutor(StaticAnswerer(), CommandRunner())
        values = executor.execute_all(manifest.prompts, pack_path, project_path)
    """

    def __init__(
        self,
        answerer: PromptAnswerer,
        runner: CommandRunner | None = None,
        script_timeout: float = 10,
    ) -> None:
        self.answerer = answerer
        self.runner = runner or CommandRunner()
        self.script_timeout = script_timeout

    def execute(self, prompt: PromptDefinition, pack_path: Path, project_path: Path) -> str:
        """
        Resolve one prompt.

        Raises:
            PromptError: If fileDetect finds nothing and no value is entered,
                or a script prompt fails
        """
        if prompt.type == PromptType.FILE_DETECT:
            return self._file_detect(prompt, project_path)
        if prompt.type == PromptType.INPUT:
            return self.answerer.ask_input(
                prompt.key, prompt.label or f"Enter value for {prompt.key}", prompt.default,
            )
        if prompt.type == PromptType.SELECT:
            if not prompt.options:
                return prompt.default or ""
            return self.answerer.ask_select(
                prompt.key, prompt.label or f"Select value for {prompt.key}", prompt.options, prompt.default,
            )
        return self._script(prompt, project_path)

    def execute_all(
        self,
        prompts: Sequence[PromptDefinition],
        pack_path: Path,
        project_path: Path,
        skip_keys: Sequence[str] = (),
    ) -> dict[str, str]:
        """Resolve every prompt not in `skip_keys`, in declaration order."""
        values: dict[str, str] = {}
        for prompt in prompts:
            if prompt.key in skip_keys:
                continue
            values[prompt.key] = self.execute(prompt, pack_path, project_path)
        return values

    def _file_detect(self, prompt: PromptDefinition, project_path: Path) -> str:
        patterns = prompt.detect_patterns
        matches = detect_files(patterns, project_path)

        if len(matches) == 1:
            logger.info("Detected %s: %s", prompt.key, matches[0])
            return matches[0]
        if matches:
            return self.answerer.ask_select(
                prompt.key,
                prompt.label or "Select a file",
                [PromptOption(value=name) for name in matches],
                prompt.default,
            )

        entered = self.answerer.ask_input(
            prompt.key, prompt.label or f"Enter value for {prompt.key}", prompt.default,
        )
        if not entered:
            raise PromptError(
                key=prompt.key,
                message=f"No files matching {', '.join(patterns)} were found for '{prompt.key}'",
            )
        return entered

    def _script(self, prompt: PromptDefinition, project_path: Path) -> str:
        command = prompt.script_command or ""
        try:
            result = self.runner.run_shell(command, cwd=project_path, timeout=self.script_timeout)
        except (CommandTimeoutError, CommandNotFoundError) as e:
            raise PromptError(key=prompt.key, message=f"Script for prompt '{prompt.key}' failed: {e.message}") from e
        if not result.succeeded:
            raise PromptError(
                key=prompt.key,
                message=f"Script for prompt '{prompt.key}' failed: {result.stderr.strip()}",
            )
        return result.stdout.strip()


# =============================================================================
# Cross-pack sharing
# =============================================================================


def built_in_values(project_path: Path | None, runner: CommandRunner | None = None) -> dict[str, str]:
    """
    Values every pack can reference without declaring a prompt.

    REPO_NAME is the git toplevel's directory name, or the project directory
    name outside a repository.
    """
    if project_path is None:
        return {}
    runner = runner or CommandRunner()
    repo_name = project_path.name
    try:
        result = runner.run(["git", "rev-parse", "--show-toplevel"], cwd=project_path, timeout=10)
        if result.succeeded and result.stdout.strip():
            repo_name = Path(result.stdout.strip()).name
    except PacksmithError as e:
        logger.debug("git toplevel lookup failed for %s: %s", project_path, e.message)
    return {"PROJECT_DIR_NAME": project_path.name, "REPO_NAME": repo_name}


class CrossPackPromptResolver:
    """
    Ask input/select prompts shared by several packs only once.

    Example:
        resolver = CrossPackPromptResolver(answerer)
        shared = resolver.shared_prompts(manifests)
        values = resolver.resolve(shared)
    """

    def __init__(self, answerer: PromptAnswerer) -> None:
        self.answerer = answerer

    @staticmethod
    def shared_prompts(packs: Sequence[Manifest]) -> dict[str, list[tuple[str, PromptDefinition]]]:
        """Map each input/select key declared by 2+ packs to (pack id, prompt) pairs."""
        by_key: dict[str, list[tuple[str, PromptDefinition]]] = {}
        for manifest in packs:
            for prompt in manifest.prompts:
                if prompt.type in SHAREABLE_TYPES:
                    by_key.setdefault(prompt.key, []).append((manifest.identifier, prompt))
        return {key: infos for key, infos in by_key.items() if len(infos) > 1}

    @staticmethod
    def merge(key: str, infos: Sequence[tuple[str, PromptDefinition]]) -> PromptDefinition:
        """
        Combine the declarations of one shared key.

        Options are merged in order, first label per value wins. The default
        is the first non-null default. Mixed select/input becomes input.
        """
        prompts = [prompt for _, prompt in infos]
        default = next((p.default for p in prompts if p.default is not None), None)
        owners = ", ".join(identifier for identifier, _ in infos)
        label = f"{key} (shared by {owners})"

        kinds = {p.type for p in prompts}
        if len(kinds) > 1:
            logger.warning("Prompt '%s' has conflicting types across packs (%s); using text input", key, owners)
            return PromptDefinition(key=key, type=PromptType.INPUT, label=label, default=default)

        if prompts[0].type == PromptType.SELECT:
            seen: set[str] = set()
            options: list[PromptOption] = []
            for prompt in prompts:
                for option in prompt.options or []:
                    if option.value not in seen:
                        seen.add(option.value)
                        options.append(option)
            return PromptDefinition(
                key=key, type=PromptType.SELECT, label=label, default=default, options=options or None,
            )
        return PromptDefinition(key=key, type=PromptType.INPUT, label=label, default=default)

    def resolve(self, shared: dict[str, list[tuple[str, PromptDefinition]]]) -> dict[str, str]:
        """Ask each shared key once, in sorted key order."""
        values: dict[str, str] = {}
        for key in sorted(shared):
            merged = self.merge(key, shared[key])
            label = merged.label or key
            if merged.type == PromptType.SELECT:
                if not merged.options:
                    values[key] = merged.default or ""
                else:
                    values[key] = self.answerer.ask_select(key, label, merged.options, merged.default)
            else:
                values[key] = self.answerer.ask_input(key, label, merged.default)
        return values
