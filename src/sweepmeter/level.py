import numpy as np

from sweepmeter.constants import DB_EPSILON, MAX_DB, MIN_DB


def to_decibels(amplitude, min_db: float = MIN_DB, max_db: float = MAX_DB):
    """Convert linear amplitude to dB relative to full scale, clamped to [min_db, max_db].

    Scalars give a float, arrays are converted elementwise."""
    db = 20 * np.log10(np.abs(amplitude) + DB_EPSILON)
    db = np.clip(db, min_db, max_db)
    if np.ndim(db) == 0:
        return float(db)
    return db
