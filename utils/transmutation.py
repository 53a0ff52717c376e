import math

# (breakpoint, grade) pairs checked top-down; the first breakpoint the
# initial grade reaches wins.
UPPER_SCALE = [(100.0, 100)] + [
    (round(100 - 1.6 * step, 2), 100 - step) for step in range(1, 26)
]
LOWER_SCALE = [(60.0 - 4 * step, 75 - step) for step in range(1, 16)]
TRANSMUTATION_TABLE = UPPER_SCALE + LOWER_SCALE

UNGRADED = 0
FLOOR_GRADE = 60


def transmute(initial_grade) -> int:
    """Map an initial grade to the DepEd quarterly grade.

    * None / NaN / non-numeric -> 0 (ungraded)
    * 100 and above            -> 100
    * 60.00 .. 99.99           -> 75 .. 99 in 1.60-wide bands
    * 0 .. 59.99               -> 60 .. 74 in 4.00-wide bands
    * negative                 -> 60

    The jump from 74 to 75 at exactly 60.00 is part of the official table.
    """
    if initial_grade is None or isinstance(initial_grade, bool):
        return UNGRADED
    try:
        grade = float(initial_grade)
    except (TypeError, ValueError):
        return UNGRADED
    if math.isnan(grade):
        return UNGRADED

    for breakpoint, transmuted in TRANSMUTATION_TABLE:
        if grade >= breakpoint:
            return transmuted
    return FLOOR_GRADE
