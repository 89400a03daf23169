from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from mockup_engine.framework import capabilities
from mockup_engine.framework.errors import ConfigurationError

DEFAULT_MODEL_ALIASES: Mapping[str, tuple[str, ...]] = {
    "baseline": ("openai:gpt-4o", "openai:dall-e-3"),
    "image": (
        "openai:dall-e-3",
        "openai:dall-e-2",
        "google:imagen-3.0-generate-002",
        "google:gemini-2.5-flash-image-preview",
    ),
    "vision": ("openai:gpt-4o", "anthropic:claude-3-5-sonnet-20241022"),
    "google": ("google:imagen-3.0-generate-002", "google:gemini-2.5-flash-image-preview"),
    "all": (
        "openai:gpt-4o",
        "openai:dall-e-3",
        "openai:dall-e-2",
        "google:imagen-3.0-generate-002",
        "google:gemini-2.5-flash-image-preview",
        "anthropic:claude-3-5-sonnet-20241022",
    ),
}

DEFAULT_PROVIDER_KEY_ENV: Mapping[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "stability": "STABILITY_API_KEY",
}

DEFAULT_CRITIQUE_MODEL = "openai:gpt-4o"
PROMPT_KINDS: tuple[str, ...] = ("generate", "critique", "revise")


@dataclass(frozen=True)
class RubricCriterion:
    id: str
    label: str
    weight: float


DEFAULT_RUBRIC: tuple[RubricCriterion, ...] = (
    RubricCriterion("task_fitness", "Task fitness & clarity", 0.35),
    RubricCriterion("hierarchy", "Visual hierarchy & layout", 0.20),
    RubricCriterion("a11y", "Accessibility (contrast/tap targets)", 0.20),
    RubricCriterion("consistency", "Consistency across screens", 0.15),
    RubricCriterion("aesthetic", "Aesthetic quality", 0.10),
)


@dataclass(frozen=True)
class ProviderSettings:
    name: str
    api_key_env: str | None = None
    timeout_seconds: float = 120.0
    base_url: str | None = None
    image_size: str | None = None
    max_tokens: int = 1024


@dataclass(frozen=True)
class RetryConfig:
    min_wait_seconds: float = 1.0
    max_wait_seconds: float = 16.0


def parse_bool(value: Any, path: str) -> bool:
    """
    Strict boolean parsing to avoid bool('false') footguns.

    Accepts True/False, 0/1 and the strings true/false/1/0/yes/no (case-insensitive).
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        raise ConfigurationError(f"Invalid boolean for {path}: {value!r}")
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes"}:
            return True
        if normalized in {"false", "0", "no"}:
            return False
    raise ConfigurationError(f"Invalid boolean for {path}: {value!r}")


def parse_float(value: Any, path: str) -> float:
    if value is None:
        raise ConfigurationError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid config type for {path}: expected float, got bool")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        if not value.strip():
            raise ConfigurationError(f"Invalid config value for {path}: must be a float")
        try:
            return float(value.strip())
        except ValueError as exc:
            raise ConfigurationError(f"Invalid config value for {path}: must be a float") from exc
    raise ConfigurationError(f"Invalid config type for {path}: expected float")


def parse_int(value: Any, path: str) -> int:
    if value is None:
        raise ConfigurationError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid config type for {path}: expected int, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if not value.strip():
            raise ConfigurationError(f"Invalid config value for {path}: must be an int")
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ConfigurationError(f"Invalid config value for {path}: must be an int") from exc
    raise ConfigurationError(f"Invalid config type for {path}: expected int")


def parse_positive_int(value: Any, path: str) -> int:
    parsed = parse_int(value, path)
    if parsed < 1:
        raise ConfigurationError(f"Invalid config value for {path}: must be >= 1")
    return parsed


def parse_model_list(value: Any, path: str) -> tuple[str, ...]:
    """Accept a comma-separated string or a list of strings; blanks are dropped."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, (list, tuple)):
        items: list[str] = []
        for idx, item in enumerate(value):
            if not isinstance(item, str):
                raise ConfigurationError(f"Invalid config type for {path}[{idx}]: expected string")
            if item.strip():
                items.append(item.strip())
        return tuple(items)
    raise ConfigurationError(f"Invalid config type for {path}: expected string or list")


def parse_rubric(value: Any, path: str) -> tuple[RubricCriterion, ...]:
    if not isinstance(value, (list, tuple)) or not value:
        raise ConfigurationError(f"Invalid config type for {path}: expected a non-empty list")
    rubric: list[RubricCriterion] = []
    seen: set[str] = set()
    for idx, raw in enumerate(value):
        item_path = f"{path}[{idx}]"
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"Invalid config type for {item_path}: expected mapping")
        criterion_id = raw.get("id")
        if not isinstance(criterion_id, str) or not criterion_id.strip():
            raise ConfigurationError(f"Missing required config: {item_path}.id")
        criterion_id = criterion_id.strip()
        if criterion_id in seen:
            raise ConfigurationError(f"Duplicate rubric id at {item_path}: {criterion_id}")
        seen.add(criterion_id)
        label = raw.get("label") or criterion_id
        if not isinstance(label, str):
            raise ConfigurationError(f"Invalid config type for {item_path}.label: expected string")
        weight = parse_float(raw.get("weight"), f"{item_path}.weight")
        if weight < 0:
            raise ConfigurationError(f"Invalid config value for {item_path}.weight: must be >= 0")
        rubric.append(RubricCriterion(criterion_id, label, weight))
    return tuple(rubric)


@dataclass(frozen=True)
class AppConfig:
    out_dir: str = "runs"
    default_variants: int = 3
    default_concurrency: int = 3
    max_retries: int = 3
    retry: RetryConfig = field(default_factory=RetryConfig)

    default_models: str = "baseline"
    model_aliases: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_MODEL_ALIASES)
    )
    extra_image_models: frozenset[str] = frozenset()
    extra_vision_models: frozenset[str] = frozenset()

    providers: Mapping[str, ProviderSettings] = field(
        default_factory=lambda: {
            name: ProviderSettings(name=name, api_key_env=env)
            for name, env in DEFAULT_PROVIDER_KEY_ENV.items()
        }
    )

    critique_model: str = DEFAULT_CRITIQUE_MODEL
    rubric: tuple[RubricCriterion, ...] = DEFAULT_RUBRIC
    prompts: Mapping[str, str] = field(default_factory=dict)
    styles_path: str = "styles/styles.md"

    def provider_settings(self, provider: str) -> ProviderSettings:
        settings = self.providers.get(provider)
        if settings is not None:
            return settings
        return ProviderSettings(name=provider, api_key_env=DEFAULT_PROVIDER_KEY_ENV.get(provider))

    def is_image_model(self, model_id: str) -> bool:
        return capabilities.is_image_model(model_id, self.extra_image_models)

    def is_vision_model(self, model_id: str) -> bool:
        return capabilities.is_vision_model(model_id, self.extra_vision_models)

    def resolve_models(self, value: str | Sequence[str] | None) -> list[str]:
        """
        Expand a model selection into fully-qualified ids.

        Accepts a comma-separated string or a list; entries may be aliases. The result is
        de-duplicated preserving first occurrence. ``None``/empty selects ``default_models``.
        """

        tokens = list(parse_model_list(value, "models")) if value else []
        if not tokens:
            tokens = list(parse_model_list(self.default_models, "models.default"))

        resolved: list[str] = []
        for token in tokens:
            expanded = self.model_aliases.get(token)
            if expanded is None:
                expanded = (token,)
            for model_id in expanded:
                try:
                    capabilities.split_model_id(model_id)
                except ValueError as exc:
                    raise ConfigurationError(
                        f"Unknown model or alias {token!r}: {exc}"
                    ) from exc
                if model_id not in resolved:
                    resolved.append(model_id)
        return resolved

    @staticmethod
    def from_dict(cfg: Mapping[str, Any]) -> tuple["AppConfig", list[str]]:
        """
        Parse and validate configuration, returning (AppConfig, warnings).

        Missing sections fall back to built-in defaults.

        Raises:
            ConfigurationError: if values are invalid (or unknown keys under ``strict: true``).
        """

        if not isinstance(cfg, Mapping):
            raise ConfigurationError("Config must be a mapping")

        warnings: list[str] = []

        strict_unknown_keys = False
        if "strict" in cfg:
            strict_unknown_keys = parse_bool(cfg.get("strict"), "strict")

        ANY: object = object()

        def collect_unknown_keys(
            mapping: Any,
            schema: Mapping[str, Any],
            *,
            prefix: str,
        ) -> list[str]:
            if not isinstance(mapping, Mapping):
                return []
            unknown: list[str] = []
            for key, value in mapping.items():
                if not isinstance(key, str):
                    continue
                if key not in schema:
                    unknown.append(f"{prefix}.{key}")
                    continue
                subschema = schema.get(key)
                if subschema is ANY:
                    continue
                if isinstance(subschema, Mapping):
                    unknown.extend(
                        collect_unknown_keys(value, subschema, prefix=f"{prefix}.{key}")
                    )
            return unknown

        run_schema: Mapping[str, Any] = {
            "out_dir": None,
            "default_variants": None,
            "default_concurrency": None,
            "max_retries": None,
            "retry": {"min_wait_seconds": None, "max_wait_seconds": None},
        }
        models_schema: Mapping[str, Any] = {
            "default": None,
            "aliases": ANY,
            "capabilities": {"image": None, "vision": None},
        }
        provider_schema: Mapping[str, Any] = {
            "api_key_env": None,
            "timeout_seconds": None,
            "base_url": None,
            "image_size": None,
            "max_tokens": None,
        }
        critique_schema: Mapping[str, Any] = {"model": None, "rubric": None}
        prompts_schema: Mapping[str, Any] = {kind: None for kind in PROMPT_KINDS}
        styles_schema: Mapping[str, Any] = {"path": None}
        top_schema = {"strict", "run", "models", "providers", "critique", "prompts", "styles"}

        unknown_keys: list[str] = [key for key in cfg if isinstance(key, str) and key not in top_schema]
        unknown_keys.extend(collect_unknown_keys(cfg.get("run"), run_schema, prefix="run"))
        unknown_keys.extend(collect_unknown_keys(cfg.get("models"), models_schema, prefix="models"))
        unknown_keys.extend(collect_unknown_keys(cfg.get("critique"), critique_schema, prefix="critique"))
        unknown_keys.extend(collect_unknown_keys(cfg.get("prompts"), prompts_schema, prefix="prompts"))
        unknown_keys.extend(collect_unknown_keys(cfg.get("styles"), styles_schema, prefix="styles"))

        providers_payload = cfg.get("providers")
        if providers_payload is not None and not isinstance(providers_payload, Mapping):
            raise ConfigurationError("Invalid config type for providers: expected mapping")
        for name, block in (providers_payload or {}).items():
            if not isinstance(block, Mapping):
                raise ConfigurationError(f"Invalid config type for providers.{name}: expected mapping")
            unknown_keys.extend(collect_unknown_keys(block, provider_schema, prefix=f"providers.{name}"))

        if unknown_keys:
            unknown_keys = sorted(set(unknown_keys))
            if strict_unknown_keys:
                raise ConfigurationError("Unknown config keys: " + ", ".join(unknown_keys))
            warnings.extend(f"Unknown config key: {key}" for key in unknown_keys)

        def lookup(path: str) -> Any:
            cur: Any = cfg
            for part in path.split("."):
                if not isinstance(cur, Mapping) or part not in cur:
                    return None
                cur = cur[part]
            return cur

        def optional_str(path: str) -> str | None:
            value = lookup(path)
            if value is None:
                return None
            if not isinstance(value, str):
                raise ConfigurationError(f"Invalid config type for {path}: expected string")
            return value.strip() or None

        def optional_positive_int(path: str, default: int) -> int:
            value = lookup(path)
            if value is None:
                return default
            return parse_positive_int(value, path)

        def optional_nonnegative_float(path: str, default: float) -> float:
            value = lookup(path)
            if value is None:
                return default
            parsed = parse_float(value, path)
            if parsed < 0:
                raise ConfigurationError(f"Invalid config value for {path}: must be >= 0")
            return parsed

        out_dir = optional_str("run.out_dir") or "runs"
        default_variants = optional_positive_int("run.default_variants", 3)
        default_concurrency = optional_positive_int("run.default_concurrency", 3)
        max_retries = optional_positive_int("run.max_retries", 3)
        retry = RetryConfig(
            min_wait_seconds=optional_nonnegative_float("run.retry.min_wait_seconds", 1.0),
            max_wait_seconds=optional_nonnegative_float("run.retry.max_wait_seconds", 16.0),
        )

        aliases: dict[str, tuple[str, ...]] = dict(DEFAULT_MODEL_ALIASES)
        aliases_payload = lookup("models.aliases")
        if aliases_payload is not None:
            if not isinstance(aliases_payload, Mapping):
                raise ConfigurationError("Invalid config type for models.aliases: expected mapping")
            for alias, members in aliases_payload.items():
                parsed_members = parse_model_list(members, f"models.aliases.{alias}")
                if not parsed_members:
                    raise ConfigurationError(f"Invalid config value for models.aliases.{alias}: empty")
                aliases[str(alias)] = parsed_members

        extra_image = frozenset(parse_model_list(lookup("models.capabilities.image"), "models.capabilities.image"))
        extra_vision = frozenset(
            parse_model_list(lookup("models.capabilities.vision"), "models.capabilities.vision")
        )

        providers: dict[str, ProviderSettings] = {
            name: ProviderSettings(name=name, api_key_env=env) for name, env in DEFAULT_PROVIDER_KEY_ENV.items()
        }
        for name in (providers_payload or {}):
            prefix = f"providers.{name}"
            timeout = optional_nonnegative_float(f"{prefix}.timeout_seconds", 120.0)
            max_tokens = optional_positive_int(f"{prefix}.max_tokens", 1024)
            providers[str(name)] = ProviderSettings(
                name=str(name),
                api_key_env=optional_str(f"{prefix}.api_key_env") or DEFAULT_PROVIDER_KEY_ENV.get(str(name)),
                timeout_seconds=timeout,
                base_url=optional_str(f"{prefix}.base_url"),
                image_size=optional_str(f"{prefix}.image_size"),
                max_tokens=max_tokens,
            )

        critique_model = optional_str("critique.model") or DEFAULT_CRITIQUE_MODEL
        try:
            capabilities.split_model_id(critique_model)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid config value for critique.model: {exc}") from exc

        rubric_payload = lookup("critique.rubric")
        rubric = DEFAULT_RUBRIC if rubric_payload is None else parse_rubric(rubric_payload, "critique.rubric")

        prompts: dict[str, str] = {}
        for kind in PROMPT_KINDS:
            template = lookup(f"prompts.{kind}")
            if template is None:
                continue
            if not isinstance(template, str):
                raise ConfigurationError(f"Invalid config type for prompts.{kind}: expected string")
            if template.strip():
                prompts[kind] = template

        return (
            AppConfig(
                out_dir=out_dir,
                default_variants=default_variants,
                default_concurrency=default_concurrency,
                max_retries=max_retries,
                retry=retry,
                default_models=optional_str("models.default") or "baseline",
                model_aliases=aliases,
                extra_image_models=extra_image,
                extra_vision_models=extra_vision,
                providers=providers,
                critique_model=critique_model,
                rubric=rubric,
                prompts=prompts,
                styles_path=optional_str("styles.path") or "styles/styles.md",
            ),
            warnings,
        )
