# src/automatic_eq_optimizer/config.py

"""
Central default settings for the Automatic EQ Optimizer.

OptimizationConfig reads its defaults from here, so a caller only has to
override what differs for its workflow (headphone, speaker or room).
"""

# =============================================================================
# FILTER SETTINGS
# =============================================================================
NUM_FILTERS = 5
MAX_NUM_FILTERS = 20  # sanity bound for the chain length
SAMPLE_RATE = 48000.0  # Hz
MIN_FREQ = 60.0  # Hz (lower edge of the correction band)
MAX_FREQ = 16000.0  # Hz (upper edge of the correction band)
MIN_Q = 1.0
MAX_Q = 3.0
MIN_DB = -12.0  # dB, most negative gain a band may take
MAX_DB = 12.0  # dB, most positive gain a band may take
PEQ_MODEL = "pk"

# =============================================================================
# LOSS SETTINGS
# =============================================================================
LOSS = "speaker-flat"
MIN_SPACING_OCT = 0.5  # octaves between band centers before the penalty applies
SPACING_WEIGHT = 20.0
SMOOTH = True
SMOOTH_N = 1  # 1/N octave smoothing of the deviation

# =============================================================================
# DIFFERENTIAL EVOLUTION SETTINGS
# =============================================================================
ALGO = "autoeq:de"
POPULATION = 30
MAXEVAL = 20000
STRATEGY = "currenttobest1bin"
DE_F = 0.8  # mutation factor
DE_CR = 0.9  # recombination factor
ADAPTIVE_WEIGHT_F = 0.8  # memory of the self-adaptive mutation mean
ADAPTIVE_WEIGHT_CR = 0.7  # memory of the self-adaptive recombination mean
TOLERANCE = 1e-3
ATOLERANCE = 1e-4
STALL_GENERATIONS = 200  # generations without improvement before stopping

# === Settings for the local refinement pass ===
REFINE = False
LOCAL_ALGO = "cobyla"
LOCAL_MAXEVAL = 2000

# =============================================================================
# PREFERENCE SCORE SETTINGS
# =============================================================================
HEADPHONE_SCORE_MIN_FREQ = 50.0  # Hz
HEADPHONE_SCORE_MAX_FREQ = 10000.0  # Hz
SPEAKER_NBD_MIN_FREQ = 100.0  # Hz
SPEAKER_NBD_MAX_FREQ = 12000.0  # Hz
SCORE_GRID_POINTS = 200

# =============================================================================
# TARGET CURVE SETTINGS (HARMAN-LIKE)
# =============================================================================
TARGET_BASS_BOOST_DB = 9  # How many dB to boost the bass.
TARGET_TILT_DB_PER_DECADE = -1.0  # Downward slope. E.g., -1dB means 1k is 1dB louder than 10k.
TARGET_CORNER_FREQ_HZ = 105.0  # The frequency where the bass boost starts to level off.
NORM_FREQ = 1000  # Frequency to normalize (0 dB)
