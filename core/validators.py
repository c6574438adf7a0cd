NETWORK_TYPES = ("pstn", "voip")
CODECS = ("g711", "g729a")

MIN_BLOCKING_PROBABILITY = 0.001
MAX_BLOCKING_PROBABILITY = 0.1


class InputValidationError(ValueError):
    """Analysis parameters rejected at the input boundary."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class SnapshotLimitError(RuntimeError):
    """The snapshot store already holds its maximum number of analyses."""


class SnapshotNotFoundError(KeyError):
    """No snapshot is stored under the requested id."""


class UpstreamError(RuntimeError):
    """The explanation service answered with an error or an unusable body."""

    def __init__(self, message, status=None):
        self.status = status
        super().__init__(message)


def validate_analysis_inputs(network_type, codec, blocking_probability):
    """Validate the parameters of a traffic analysis run.

    Parameters
    ----------
    network_type : str
        ``"pstn"`` or ``"voip"``.
    codec : str or None
        Voice codec, required for VoIP.
    blocking_probability : float
        Target grade of service.

    Returns
    -------
    list of str
        Error messages for parameters outside allowed bounds.
    """
    errors = []

    # Network type validations
    if network_type not in NETWORK_TYPES:
        errors.append("Network type must be 'pstn' or 'voip'.")

    # Codec validations
    if network_type == "voip":
        if not codec:
            errors.append("A codec is required for VoIP analysis.")
        elif codec not in CODECS:
            errors.append("Codec must be 'g711' or 'g729a'.")

    # Blocking probability validations
    try:
        p = float(blocking_probability)
    except (TypeError, ValueError):
        errors.append("Blocking probability must be a number.")
    else:
        if p != p or not MIN_BLOCKING_PROBABILITY <= p <= MAX_BLOCKING_PROBABILITY:
            errors.append(
                "Please enter a valid blocking probability between "
                f"{MIN_BLOCKING_PROBABILITY} and {MAX_BLOCKING_PROBABILITY}."
            )

    return errors


def require_valid_analysis_inputs(network_type, codec, blocking_probability):
    """Raise :class:`InputValidationError` when any parameter is invalid."""
    errors = validate_analysis_inputs(network_type, codec, blocking_probability)
    if errors:
        raise InputValidationError(errors)
