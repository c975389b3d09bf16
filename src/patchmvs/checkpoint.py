"""Named-tensor weight archives with alternate-name resolution."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import torch
import torch.nn as nn
import yaml

from .errors import CheckpointError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ALIAS_TABLE = Path(__file__).parent / "resources" / "parameter_aliases.yaml"

# Keys under which training tools nest the state dict in their checkpoints.
NESTED_STATE_KEYS = ("model", "state_dict")


@dataclass
class LoadReport:
    """Outcome of applying a weight archive to a model.

    Attributes:
        loaded: Canonical names read under their canonical name.
        aliased: Canonical names read under their alternate name.
        missing: Canonical names found under neither name (left unchanged).
        unexpected: Archive entries that no model tensor consumed.
    """

    loaded: list[str] = field(default_factory=list)
    aliased: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    unexpected: list[str] = field(default_factory=list)


def load_alias_table(path: str | Path | None = None) -> dict[str, str]:
    """Load an alternate -> canonical name table from YAML.

    Args:
        path: YAML file with a flat mapping, or None for the bundled table.

    Returns:
        Mapping from alternate name to canonical name.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not a flat string mapping.
    """
    path = Path(path) if path is not None else DEFAULT_ALIAS_TABLE
    with open(path) as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise ConfigurationError(
            f"Alias table {path} must map alternate names to canonical names"
        )
    logger.debug("Loaded %d parameter aliases from %s", len(data), path)
    return data


def invert_alias_table(aliases: Mapping[str, str]) -> dict[str, str]:
    """Turn an alternate -> canonical table into canonical -> alternate.

    Raises:
        ConfigurationError: If two alternate names map to the same canonical name.
    """
    inverse: dict[str, str] = {}
    for alternate, canonical in aliases.items():
        if canonical in inverse:
            raise ConfigurationError(
                f"Canonical name {canonical!r} has two alternates: "
                f"{inverse[canonical]!r} and {alternate!r}"
            )
        inverse[canonical] = alternate
    return inverse


def read_archive(path: str | Path) -> dict[str, torch.Tensor]:
    """Read a named-tensor archive written by torch.save.

    Checkpoints that nest the tensors under "model" or "state_dict" are
    unwrapped.

    Args:
        path: Archive file.

    Returns:
        Mapping from name to tensor, on CPU.
    """
    archive = torch.load(Path(path), map_location="cpu", weights_only=True)
    for key in NESTED_STATE_KEYS:
        if isinstance(archive.get(key), Mapping):
            logger.info("Reading tensors nested under %r in %s", key, path)
            archive = archive[key]
            break
    return dict(archive)


def save_checkpoint(model: nn.Module, path: str | Path) -> None:
    """Write every parameter and buffer of model by name.

    Args:
        model: Module to save.
        path: Output file path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    archive = {name: p.detach().cpu() for name, p in model.named_parameters()}
    archive.update({name: b.detach().cpu() for name, b in model.named_buffers()})
    torch.save(archive, path)
    logger.info("Saved %d tensors to %s", len(archive), path)


def load_checkpoint(
    model: nn.Module,
    archive: str | Path | Mapping[str, torch.Tensor],
    aliases: Mapping[str, str] | None = None,
    strict: bool = False,
) -> LoadReport:
    """Copy archive tensors into model parameters and buffers.

    Each expected name is looked up first under its alternate name from the
    alias table, then under the canonical name itself. Names found under
    neither are reported and keep their current value.

    Args:
        model: Module to load into.
        archive: Archive path or an already loaded name -> tensor mapping.
        aliases: Alternate -> canonical name table. None means no aliases. The
            bundled table swaps some names (feature.output1/output3), so only
            pass it for archives that use the alternate naming.
        strict: Raise instead of warning on missing names.

    Returns:
        LoadReport describing which names were resolved and how.

    Raises:
        CheckpointError: On a shape mismatch, or a missing name when strict.
        ConfigurationError: If the alias table maps two names to one target.
    """
    if not isinstance(archive, Mapping):
        archive = read_archive(archive)
    alternates = invert_alias_table(aliases or {})

    report = LoadReport()
    consumed: set[str] = set()
    entries = [("parameter", model.named_parameters()), ("buffer", model.named_buffers())]

    with torch.no_grad():
        for kind, named in entries:
            for name, tensor in named:
                alternate = alternates.get(name)
                if alternate is not None and alternate in archive:
                    source = alternate
                    report.aliased.append(name)
                elif name in archive:
                    source = name
                    report.loaded.append(name)
                else:
                    if strict:
                        raise CheckpointError(f"Archive does not contain {kind}: {name}")
                    logger.warning("Archive does not contain %s: %s", kind, name)
                    report.missing.append(name)
                    continue

                value = archive[source]
                if value.shape != tensor.shape:
                    raise CheckpointError(
                        f"Shape mismatch for {kind} {name} (read as {source}): "
                        f"expected {tuple(tensor.shape)}, got {tuple(value.shape)}"
                    )
                tensor.copy_(value)
                consumed.add(source)

    report.unexpected = sorted(set(archive) - consumed)
    if report.unexpected:
        logger.info("Ignored %d unused archive entries", len(report.unexpected))
    logger.info(
        "Loaded %d tensors (%d through aliases), %d missing",
        len(report.loaded) + len(report.aliased),
        len(report.aliased),
        len(report.missing),
    )
    return report
