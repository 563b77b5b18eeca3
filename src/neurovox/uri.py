"""
Volume URI parsing.

    neurovox[compartments]://path/to/circuit?report=voltage,target=Column
    neurovoxsomas://path?report=soma#Column
    neurovoxspikes://path?duration=10,spikes=/path/out.dat,target=Column
    neurovoxsynapses://path?target=Column
    neurovoxvsd://path?dyecurve=/path/curve.txt,target=Column

Parameters are separated by ``,`` or ``&``. A ``target=`` parameter takes
precedence over the ``#target`` fragment.
"""

from typing import Any, Callable, Dict
from urllib.parse import unquote, urlsplit
import logging
import re

from .errors import ConfigurationError
from .types import SamplingConfig, SourceType

logger = logging.getLogger(__name__)

SCHEMES = {
    "neurovox": SourceType.COMPARTMENTS,
    "neurovoxcompartments": SourceType.COMPARTMENTS,
    "neurovoxsomas": SourceType.SOMAS,
    "neurovoxspikes": SourceType.SPIKES,
    "neurovoxsynapses": SourceType.SYNAPSES,
    "neurovoxvsd": SourceType.VSD,
}

# URI parameter -> (SamplingConfig field, converter)
_PARAMETERS: Dict[str, tuple] = {
    "target": ("target", str),
    "report": ("report", str),
    "magnitude": ("magnitude", float),
    "functor": ("functor", str.lower),
    "resolution": ("resolution", float),
    "maxblocksize": ("max_block_size", int),
    "maxerror": ("max_error", float),
    "dt": ("dt", float),
    "duration": ("duration", float),
    "spikes": ("spikes", str),
    "dyecurve": ("dyecurve", str),
    "reference": ("reference_value", float),
    "restingpotential": ("resting_potential", float),
    "threads": ("num_threads", int),
}


def _convert(key: str, value: str, converter: Callable[[str], Any]) -> Any:
    try:
        return converter(value)
    except ValueError:
        raise ConfigurationError(f"invalid value '{value}' for parameter '{key}'") from None


def parse_volume_uri(uri: str) -> SamplingConfig:
    """
    Parse a volume URI into a sampling configuration.

    Args:
        uri: Volume URI, e.g. ``neurovoxspikes://?dt=1,duration=1#Column``

    Returns:
        The validated configuration

    Raises:
        ConfigurationError: Unknown scheme or invalid parameter value
    """
    parts = urlsplit(uri)
    scheme = parts.scheme.lower()
    if scheme not in SCHEMES:
        raise ConfigurationError(
            f"unknown volume scheme '{parts.scheme}', expected one of {sorted(SCHEMES)}"
        )

    fields: Dict[str, Any] = {"source_type": SCHEMES[scheme]}
    circuit = unquote(parts.netloc + parts.path)
    if circuit:
        fields["circuit"] = circuit
    if parts.fragment:
        fields["target"] = unquote(parts.fragment)

    for item in re.split(r"[,&]", parts.query):
        if not item:
            continue
        key, _, value = item.partition("=")
        name = key.strip().lower()
        if name not in _PARAMETERS:
            logger.warning(f"Ignoring unknown volume parameter '{key}'")
            continue
        field_name, converter = _PARAMETERS[name]
        fields[field_name] = _convert(key, unquote(value), converter)

    config = SamplingConfig(**fields)
    logger.debug(f"Parsed {uri} into {config}")
    return config
