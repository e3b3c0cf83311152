"""
Model catalog: the static set of models the engine can route to.

The catalog is configuration, not computed state. Strategies look models
up by size class (smallest, mid, largest) rather than by name so a
deployment can swap the concrete models without touching strategy code.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .types import ModelDescriptor

DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        name="llama3.2:3b-instruct-q5_K_M",
        display_name="Llama 3.2 (3B)",
        size_class="3B",
        tier="fast",
        strengths=("speed", "simple tasks"),
        weaknesses=("complex reasoning",),
        ram_required_mb=4000,
        gpu_required=False,
        context_window=8192,
    ),
    ModelDescriptor(
        name="qwen2.5-coder:7b-instruct-q5_K_M",
        display_name="Qwen 2.5 Coder (7B)",
        size_class="7B",
        tier="balanced",
        strengths=("code review", "explanations"),
        weaknesses=("very complex architecture",),
        ram_required_mb=8000,
        gpu_required=True,
        context_window=16384,
    ),
    ModelDescriptor(
        name="qwen2.5-coder:7b-instruct-q4_K_M",
        display_name="Qwen 2.5 Coder (7B, Q4)",
        size_class="7B",
        tier="balanced",
        strengths=("code review", "low memory"),
        weaknesses=("very complex architecture",),
        ram_required_mb=6000,
        gpu_required=True,
        context_window=16384,
    ),
    ModelDescriptor(
        name="deepseek-v2:16b-instruct-q4_K_M",
        display_name="DeepSeek V2 (16B)",
        size_class="16B",
        tier="expert",
        strengths=("architecture", "deep analysis"),
        weaknesses=("speed",),
        ram_required_mb=16000,
        gpu_required=True,
        context_window=32768,
    ),
)

DEFAULT_RAM_REQUIREMENT_MB = 8000


class ModelCatalog:
    """
    Read-only collection of model descriptors.

    Within a size class the first-listed entry is the preferred one.
    """

    def __init__(self, models: Iterable[ModelDescriptor] = DEFAULT_MODELS):
        self._models: tuple[ModelDescriptor, ...] = tuple(models)
        if not self._models:
            raise ValueError("ModelCatalog requires at least one model")
        self._by_name = {m.name: m for m in self._models}

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def names(self) -> list[str]:
        return [m.name for m in self._models]

    def get(self, name: str) -> ModelDescriptor | None:
        """Exact lookup, then family match (e.g. "qwen2.5-coder:7b")."""
        if name in self._by_name:
            return self._by_name[name]
        for model in self._models:
            if model.name.startswith(name) or name.startswith(model.name.split("-instruct")[0]):
                return model
        return None

    def size_classes(self) -> list[str]:
        """Distinct size classes, smallest first."""
        seen: dict[str, float] = {}
        for model in self._models:
            seen.setdefault(model.size_class, model.size_billions)
        return sorted(seen, key=seen.__getitem__)

    def by_size(self, size_class: str) -> ModelDescriptor | None:
        for model in self._models:
            if model.size_class.lower() == size_class.lower():
                return model
        return None

    def smallest(self) -> ModelDescriptor:
        return self._first_of(self.size_classes()[0])

    def largest(self) -> ModelDescriptor:
        return self._first_of(self.size_classes()[-1])

    def mid(self) -> ModelDescriptor:
        """The middle size class; with two classes, the smaller one."""
        classes = self.size_classes()
        return self._first_of(classes[(len(classes) - 1) // 2])

    def variant(self, size_class: str, quantization: str) -> ModelDescriptor:
        """A specific quantization of a size class, else that class's preferred entry."""
        for model in self._models:
            if model.size_class == size_class and quantization.lower() in model.name.lower():
                return model
        return self._first_of(size_class)

    def cpu_friendly(self) -> ModelDescriptor:
        """Smallest model that does not need a GPU (smallest overall if none)."""
        cpu_models = [m for m in self._models if not m.gpu_required]
        if not cpu_models:
            return self.smallest()
        return min(cpu_models, key=lambda m: m.size_billions)

    def ram_requirement(self, name: str) -> int:
        model = self.get(name)
        return model.ram_required_mb if model else DEFAULT_RAM_REQUIREMENT_MB

    def _first_of(self, size_class: str) -> ModelDescriptor:
        model = self.by_size(size_class)
        if model is None:
            raise KeyError(f"No model with size class {size_class}")
        return model


__all__ = [
    "DEFAULT_MODELS",
    "DEFAULT_RAM_REQUIREMENT_MB",
    "ModelCatalog",
]
