"""
Settings document composition.

The settings document is a JSON object shared between the user and every
configured pack. Packs contribute three things:

- hook commands, under `hooks.<Event>` as
  `[{"hooks": [{"type": "command", "command": "..."}]}]`
- plugin flags, as `enabledPlugins.<bare name> = true`
- arbitrary settings fragments, deep-merged in pack order

Ownership:
    Values already present are never overwritten. Every merge returns the
    leaf key paths it inserted; only those paths are recorded and only those
    are removed later. List items appended to an existing list are recorded
    as `path[<json item>]` so they can be removed without touching the
    user's own items.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any

from packsmith.errors import StateCorruptError
from packsmith.store.backup import BackupStore
from packsmith.store.files import write_json

logger = logging.getLogger(__name__)

HOOKS_KEY = "hooks"
PLUGINS_KEY = "enabledPlugins"


def _split_path(key_path: str) -> tuple[list[str], Any | None]:
    """Split `a.b[<json>]` into (["a", "b"], item); item is None for plain paths."""
    if key_path.endswith("]") and "[" in key_path:
        base, item_text = key_path.split("[", 1)
        return base.split("."), json.loads(item_text[:-1])
    return key_path.split("."), None


def _item_path(key_path: str, item: Any) -> str:
    return f"{key_path}[{json.dumps(item, sort_keys=True)}]"


class SettingsDocument:
    """
    Load, edit and save a settings JSON file.

    Example:
        doc = SettingsDocument.load(scope.settings_path)
        inserted = doc.merge({"env": {"DEBUG": "1"}})   # ["env.DEBUG"]
        doc.add_hook("SessionStart", "bash .claude/hooks/start.sh")
        doc.save()
    """

    def __init__(self, path: Path, data: dict[str, Any] | None = None) -> None:
        self.path = path
        self.data: dict[str, Any] = data if data is not None else {}
        self._saved = copy.deepcopy(self.data)

    @classmethod
    def load(cls, path: Path) -> "SettingsDocument":
        """
        Raises:
            StateCorruptError: If the file isn't a JSON object
        """
        if not path.exists():
            return cls(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StateCorruptError(path=str(path), underlying_error=str(e)) from e
        if not isinstance(data, dict):
            raise StateCorruptError(path=str(path), underlying_error="settings must be a JSON object")
        return cls(path, data)

    def save(self, backups: BackupStore | None = None) -> None:
        """
        Write the document, or delete the file once it's empty.

        Nothing is written when the content is unchanged since load. Otherwise
        the file on disk is first copied into `backups`, when given.
        """
        if self.data == self._saved and (self.path.exists() or not self.data):
            return
        if backups is not None:
            backups.backup(self.path)
        if not self.data:
            if self.path.exists():
                self.path.unlink()
                logger.debug("Removed empty settings file %s", self.path)
        else:
            write_json(self.path, self.data)
        self._saved = copy.deepcopy(self.data)

    @property
    def is_empty(self) -> bool:
        return not self.data

    # -------------------------------------------------------------------------
    # Merging
    # -------------------------------------------------------------------------

    def merge(self, fragment: dict[str, Any]) -> list[str]:
        """
        Deep-merge a fragment without overwriting existing values.

        Returns:
            Leaf key paths (and list item paths) that were inserted
        """
        inserted: list[str] = []
        self._merge_into(self.data, fragment, "", inserted)
        return inserted

    def _merge_into(self, target: dict[str, Any], fragment: dict[str, Any], prefix: str, inserted: list[str]) -> None:
        for key, value in fragment.items():
            path = f"{prefix}{key}"
            if key not in target:
                if isinstance(value, dict) and value:
                    target[key] = {}
                    self._merge_into(target[key], value, f"{path}.", inserted)
                else:
                    target[key] = copy.deepcopy(value)
                    inserted.append(path)
            elif isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_into(target[key], value, f"{path}.", inserted)
            elif isinstance(target[key], list) and isinstance(value, list):
                for item in value:
                    if item not in target[key]:
                        target[key].append(copy.deepcopy(item))
                        inserted.append(_item_path(path, item))

    def enable_plugin(self, bare_name: str) -> str | None:
        """Set `enabledPlugins.<name>` unless already present; returns the inserted path."""
        plugins = self.data.setdefault(PLUGINS_KEY, {})
        if bare_name in plugins:
            return None
        plugins[bare_name] = True
        return f"{PLUGINS_KEY}.{bare_name}"

    def get(self, key_path: str) -> Any:
        node: Any = self.data
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def remove_keys(self, key_paths: list[str]) -> None:
        """Delete recorded leaf paths, pruning containers left empty."""
        for key_path in key_paths:
            parts, item = _split_path(key_path)
            self._remove(self.data, parts, item)

    def _remove(self, node: dict[str, Any], parts: list[str], item: Any) -> bool:
        """Remove below `node`; returns True if node[parts[0]] was emptied and dropped."""
        key = parts[0]
        if key not in node:
            return False

        if len(parts) == 1:
            if item is None:
                del node[key]
                return True
            values = node[key]
            if isinstance(values, list) and item in values:
                values.remove(item)
                if not values:
                    del node[key]
                    return True
            return False

        child = node[key]
        if not isinstance(child, dict):
            return False
        if self._remove(child, parts[1:], item) and not child:
            del node[key]
            return True
        return False

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def has_hook(self, event: str, command: str) -> bool:
        for group in self.data.get(HOOKS_KEY, {}).get(event, []):
            for hook in group.get("hooks", []):
                if hook.get("command") == command:
                    return True
        return False

    def add_hook(self, event: str, command: str) -> bool:
        """Register a hook command under an event; returns False if it already exists."""
        if self.has_hook(event, command):
            return False
        groups = self.data.setdefault(HOOKS_KEY, {}).setdefault(event, [])
        groups.append({"hooks": [{"type": "command", "command": command}]})
        return True

    def remove_hook_commands(self, commands: list[str]) -> None:
        """Remove hook entries by command, pruning groups, events and `hooks` left empty."""
        targets = set(commands)
        hooks = self.data.get(HOOKS_KEY)
        if not targets or not isinstance(hooks, dict):
            return

        for event in list(hooks):
            groups = hooks[event]
            if not isinstance(groups, list):
                continue
            kept_groups = []
            for group in groups:
                entries = group.get("hooks", []) if isinstance(group, dict) else []
                remaining = [h for h in entries if h.get("command") not in targets]
                if len(remaining) != len(entries):
                    if not remaining:
                        continue
                    group = {**group, "hooks": remaining}
                kept_groups.append(group)
            if kept_groups:
                hooks[event] = kept_groups
            else:
                del hooks[event]

        if not hooks:
            del self.data[HOOKS_KEY]
