"""Migration definitions and the explicit registry that holds them.

A migration is a named bundle of four callables::

    prepare(dm) -> vars                # deploy auxiliary contracts, compute inputs
    enact(dm, gov_dm, vars)            # submit the governance proposal
    enacted(dm) -> bool                # live on-chain check: has it landed?
    verify(dm)                         # read-only post-conditions

Migrations are registered explicitly::

    registry = MigrationRegistry()
    registry.load([add_wsteth, upgrade_price_feeds])

Names are unique per registry; a duplicate fails the whole batch before
any network interaction.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from deployforge.errors import ConfigurationError

if TYPE_CHECKING:
    from deployforge.core.deployment_manager import DeploymentManager

logger = logging.getLogger(__name__)

PrepareFn = Callable[["DeploymentManager"], Any]
EnactFn = Callable[["DeploymentManager", "DeploymentManager", Any], Any]
EnactedFn = Callable[["DeploymentManager"], bool]
VerifyFn = Callable[["DeploymentManager"], Any]


class Migration:
    """Base class for migrations.

    Subclasses set ``name`` (and optionally ``vars_model``) as class
    attributes and override the lifecycle methods. ``enact`` is the only
    one without a default. A migration cannot be modified once registered.
    """

    name: str = ""
    vars_model: type[BaseModel] | None = None

    def __init__(self, name: str | None = None) -> None:
        if name is not None:
            self.name = name
        if not self.name or not self.name.strip():
            raise ConfigurationError(f"{type(self).__name__} has no migration name.")

    def __setattr__(self, attr: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise AttributeError(f"Migration '{self.name}' is immutable after registration")
        super().__setattr__(attr, value)

    def _seal(self) -> None:
        object.__setattr__(self, "_sealed", True)

    def __repr__(self) -> str:
        return f"<Migration {self.name}>"

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def prepare(self, dm: DeploymentManager) -> Any:
        return None

    def enact(self, dm: DeploymentManager, gov_dm: DeploymentManager, vars: Any) -> None:
        raise NotImplementedError(f"Migration '{self.name}' does not implement enact")

    def enacted(self, dm: DeploymentManager) -> bool:
        return False

    def verify(self, dm: DeploymentManager) -> None:
        return None

    # ------------------------------------------------------------------
    # Vars
    # ------------------------------------------------------------------

    def dump_vars(self, value: Any) -> Any:
        """Validate *value* and return its JSON-ready checkpoint form."""
        if self.vars_model is None:
            return value.model_dump(mode="json") if isinstance(value, BaseModel) else value
        try:
            model = (
                value
                if isinstance(value, self.vars_model)
                else self.vars_model.model_validate(value)
            )
        except ValidationError as exc:
            raise ValueError(
                f"prepare() of '{self.name}' returned vars not matching "
                f"{self.vars_model.__name__}: {exc}"
            ) from exc
        return model.model_dump(mode="json")

    def load_vars(self, raw: Any) -> Any:
        """Rebuild typed vars from a checkpoint."""
        if self.vars_model is None:
            return raw
        return self.vars_model.model_validate(raw)


class _FunctionMigration(Migration):
    def __init__(
        self,
        name: str,
        *,
        prepare: PrepareFn | None,
        enact: EnactFn,
        enacted: EnactedFn | None,
        verify: VerifyFn | None,
        vars_model: type[BaseModel] | None,
    ) -> None:
        super().__init__(name)
        self.vars_model = vars_model
        self._prepare = prepare
        self._enact = enact
        self._enacted = enacted
        self._verify = verify

    def prepare(self, dm: DeploymentManager) -> Any:
        return self._prepare(dm) if self._prepare is not None else None

    def enact(self, dm: DeploymentManager, gov_dm: DeploymentManager, vars: Any) -> None:
        self._enact(dm, gov_dm, vars)

    def enacted(self, dm: DeploymentManager) -> bool:
        return bool(self._enacted(dm)) if self._enacted is not None else False

    def verify(self, dm: DeploymentManager) -> None:
        if self._verify is not None:
            self._verify(dm)


def migration(
    name: str,
    *,
    enact: EnactFn,
    prepare: PrepareFn | None = None,
    enacted: EnactedFn | None = None,
    verify: VerifyFn | None = None,
    vars_model: type[BaseModel] | None = None,
) -> Migration:
    """Build a migration from plain functions."""
    return _FunctionMigration(
        name,
        prepare=prepare,
        enact=enact,
        enacted=enacted,
        verify=verify,
        vars_model=vars_model,
    )


class MigrationRegistry:
    """Ordered, duplicate-free collection of migrations."""

    def __init__(self) -> None:
        self._migrations: dict[str, Migration] = {}

    def load(self, migrations: Iterable[Migration]) -> dict[str, Migration]:
        """Register a batch atomically.

        Raises ``ConfigurationError`` on any duplicate name, within the
        batch or against earlier registrations; nothing from the batch is
        registered in that case.
        """
        batch: dict[str, Migration] = {}
        for item in migrations:
            if not isinstance(item, Migration):
                raise ConfigurationError(
                    f"Expected a Migration, got {type(item).__name__}"
                )
            if item.name in self._migrations or item.name in batch:
                raise ConfigurationError(f"Duplicate migration name '{item.name}'")
            batch[item.name] = item

        for item in batch.values():
            item._seal()
        self._migrations.update(batch)
        logger.debug("Registered %d migration(s): %s", len(batch), list(batch))
        return dict(batch)

    def register(self, item: Migration) -> Migration:
        self.load([item])
        return item

    def get(self, name: str) -> Migration:
        try:
            return self._migrations[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown migration '{name}'. Registered: {list(self._migrations)}"
            ) from None

    def names(self) -> list[str]:
        """Names in registration order."""
        return list(self._migrations)

    def __contains__(self, name: object) -> bool:
        return name in self._migrations

    def __iter__(self) -> Iterator[Migration]:
        return iter(self._migrations.values())

    def __len__(self) -> int:
        return len(self._migrations)


def resolve_ref(ref: str) -> Any:
    """Import ``"package.module:attribute"`` and return the attribute."""
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Reference must look like 'module:attribute', got {ref!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import module '{module_name}': {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attr}'") from None


def resolve_registry(ref: str) -> MigrationRegistry:
    """Import a registry from ``"package.module:attribute"``.

    The attribute may be a ``MigrationRegistry`` or a zero-argument
    callable returning one.
    """
    target = resolve_ref(ref)
    if callable(target) and not isinstance(target, MigrationRegistry):
        target = target()
    if not isinstance(target, MigrationRegistry):
        raise ConfigurationError(
            f"'{ref}' is a {type(target).__name__}, not a MigrationRegistry"
        )
    return target
