# An assortment of constants

import math

# analysis variables, in state order
VARIABLES = ("rhou", "rhov", "rhow", "tempk", "qv", "rhoa", "qr")
NUM_VARS = len(VARIABLES)

# value, inverse error, x, y, z, type, time, one weight per variable
OBS_FIELDS = 7 + NUM_VARS
OBS_COLUMNS = ("value", "inverse_error", "x", "y", "z", "type", "time") + tuple(
    f"weight_{name}" for name in VARIABLES
)

# two Gauss points per cell, offset from the cell centre in units of the increment
GAUSS_OFFSET = 0.5 / math.sqrt(3.0)
MISH_POINTS_PER_CELL = 2

# stencil of the cubic basis and the recursive filter
MIN_NODES = 4

AXES = ("x", "y", "z")

# density perturbations are carried in units of 0.01 kg m^-3
RHOA_SCALE = 100.0

# specific gas constant for dry air and gravity
RD = 287.0
GRAVITY = 9.81
