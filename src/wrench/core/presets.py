"""Built-in and custom presets, and expansion of a preset into a run plan."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any, Union

from wrench.core.options import merge_options
from wrench.core.registry import ServiceRegistry
from wrench.core.store import WrenchStore
from wrench.errors import InvalidOption, InvalidPreset
from wrench.models.service import PlanItem, PresetEntry, ServicePreset

logger = logging.getLogger("wrench.presets")

BUILTIN_PRESETS: tuple[ServicePreset, ...] = (
    ServicePreset(
        id="diagnostics",
        name="Diagnostics",
        description="Quick, read-only health check",
        entries=(PresetEntry("disk_space"), PresetEntry("ping_test")),
        builtin=True,
    ),
    ServicePreset(
        id="general",
        name="General",
        description="Routine maintenance: health, system files and malware",
        entries=(
            PresetEntry("disk_space"),
            PresetEntry("ping_test"),
            PresetEntry("sfc"),
            PresetEntry("smartctl"),
            PresetEntry("kvrt_scan"),
        ),
        builtin=True,
    ),
    ServicePreset(
        id="complete",
        name="Complete",
        description="Everything, including benchmarks and a stress test",
        entries=(
            PresetEntry("disk_space"),
            PresetEntry("ping_test"),
            PresetEntry("sfc"),
            PresetEntry("chkdsk", {"mode": "read_only"}),
            PresetEntry("smartctl"),
            PresetEntry("kvrt_scan"),
            PresetEntry("winsat"),
            PresetEntry(
                "heavyload", {"duration_minutes": 10, "stress_memory": True}, enabled=False
            ),
        ),
        builtin=True,
    ),
)

# A custom plan item: a bare service id, or a (service id, options) pair
PlanSpec = Union[str, tuple[str, Mapping[str, Any]], PresetEntry, PlanItem]


def make_preset_id(name: str) -> str:
    """Lowercase slug used as the id of a custom preset."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    if not slug:
        raise InvalidPreset(f"Cannot derive a preset id from {name!r}")
    return slug


def _as_entry(item: PlanSpec) -> PresetEntry:
    if isinstance(item, str):
        return PresetEntry(item)
    if isinstance(item, PresetEntry):
        return item
    if isinstance(item, PlanItem):
        return PresetEntry(item.service_id, item.options)
    service_id, options = item
    return PresetEntry(service_id, options)


class PresetCatalog:
    """Presets known to this installation, plus plan resolution against the registry."""

    def __init__(self, registry: ServiceRegistry, store: WrenchStore | None = None) -> None:
        self._registry = registry
        self._store = store

    def presets(self) -> list[ServicePreset]:
        custom = self._store.list_presets() if self._store is not None else []
        return [*BUILTIN_PRESETS, *custom]

    def preset(self, id_or_name: str) -> ServicePreset:
        """Find a preset by id or display name, case-insensitively."""
        wanted = id_or_name.strip().lower()
        for preset in self.presets():
            if preset.id.lower() == wanted or preset.name.lower() == wanted:
                return preset
        raise InvalidPreset(f"Unknown preset: {id_or_name}")

    def save_custom(self, preset: ServicePreset) -> ServicePreset:
        if self._store is None:
            raise InvalidPreset("Custom presets need a store")
        builtin_keys = {p.id.lower() for p in BUILTIN_PRESETS} | {
            p.name.lower() for p in BUILTIN_PRESETS
        }
        if preset.id.lower() in builtin_keys or preset.name.lower() in builtin_keys:
            raise InvalidPreset(f"'{preset.name}' would shadow a built-in preset")
        if not preset.entries:
            raise InvalidPreset(f"Preset '{preset.name}' has no services")
        for entry in preset.entries:
            merge_options(self._registry.definition_for(entry.service_id), entry.options)

        saved = ServicePreset(
            id=preset.id,
            name=preset.name,
            entries=preset.entries,
            description=preset.description,
            builtin=False,
        )
        self._store.save_preset(saved)
        logger.info("Saved custom preset %s (%d services)", saved.id, len(saved.entries))
        return saved

    def delete_custom(self, preset_id: str) -> None:
        if any(p.id == preset_id.lower() for p in BUILTIN_PRESETS):
            raise InvalidPreset(f"Built-in preset '{preset_id}' cannot be deleted")
        if self._store is None or not self._store.delete_preset(preset_id):
            raise InvalidPreset(f"Unknown custom preset: {preset_id}")
        logger.info("Deleted custom preset %s", preset_id)

    def resolve(
        self,
        preset_or_items: str | Iterable[PlanSpec],
        overrides: Mapping[str, Mapping[str, Any]] | None = None,
        enable: Iterable[str] = (),
    ) -> list[PlanItem]:
        """Expand a preset (id or name) or a custom list into plan items.

        Each item's options are schema defaults, then the preset's values,
        then ``overrides[service_id]``. Everything is validated here, so a
        plan that comes back can be started without further checks. Disabled
        entries are left out unless their service id is in ``enable``.
        """
        if isinstance(preset_or_items, str):
            entries = self.preset(preset_or_items).entries
        else:
            entries = tuple(_as_entry(item) for item in preset_or_items)

        enabled = set(enable)
        unknown = enabled - {e.service_id for e in entries}
        if unknown:
            raise InvalidPreset(
                f"Cannot enable services not in the plan: {', '.join(sorted(unknown))}"
            )
        entries = tuple(e for e in entries if e.enabled or e.service_id in enabled)
        if not entries:
            raise InvalidPreset("Nothing to run: the plan is empty")

        overrides = overrides or {}
        planned = {e.service_id for e in entries}
        for service_id in overrides:
            if service_id not in planned:
                raise InvalidOption(
                    f"Options given for '{service_id}', which is not in the plan", service_id
                )

        plan: list[PlanItem] = []
        for entry in entries:
            definition = self._registry.definition_for(entry.service_id)
            options = merge_options(definition, entry.options, overrides.get(entry.service_id))
            plan.append(PlanItem(entry.service_id, options))
        return plan
