import math

QUALITY_MULTIPLIERS = {
    "720p": 1,
    "1080p": 1,
    "2K": 1.5,
    "4K": 2,
}
DEFAULT_QUALITY = "1080p"
MIN_GENERATION_COST = 5

def quality_multiplier(quality):
    """
	Looks up the credit multiplier of a quality tier.

    Args:
        quality (str): One of the keys of QUALITY_MULTIPLIERS.

    Returns:
        float: The multiplier applied to the rounded video duration.

    Raises:
        ValueError: If the tier is not offered.
    """
    try:
        return QUALITY_MULTIPLIERS[quality]
    except KeyError:
        raise ValueError(f"Unknown quality tier: {quality}")

def calculate_generation_cost(duration, quality=DEFAULT_QUALITY):
    """
	Calculates the credit cost of a motion transfer generation.

    The duration is rounded up to the next whole second before the tier
    multiplier is applied, and the product is rounded up again. While no video
    is selected the duration is unknown and the fixed minimum cost applies.

    Args:
        duration (float or None): Decoded video duration in seconds.
        quality (str, optional): Quality tier. Defaults to "1080p".

    Returns:
        int: Number of credits the generation will spend.
    """
    multiplier = quality_multiplier(quality)
    if duration is None:
        return MIN_GENERATION_COST
    if duration < 0:
        raise ValueError("Duration cannot be negative.")
    return math.ceil(math.ceil(duration) * multiplier)

def describe_cost(duration, quality=DEFAULT_QUALITY):
    return {
        "duration": duration,
        "quality": quality,
        "multiplier": quality_multiplier(quality),
        "total_credit_cost": calculate_generation_cost(duration, quality),
    }
