"""Metadata column labels for particle and optics tables.

Labels follow the RELION STAR conventions so tables read by external
STAR parsers can be passed in unchanged.
"""

# Particle table
OPTICS_GROUP = "rlnOpticsGroup"
MICROGRAPH_NAME = "rlnMicrographName"
DEFOCUS_U = "rlnDefocusU"
DEFOCUS_V = "rlnDefocusV"
DEFOCUS_ANGLE = "rlnDefocusAngle"
PHASE_SHIFT = "rlnPhaseShift"
CTF_BFACTOR = "rlnCtfBfactor"
CTF_SCALEFACTOR = "rlnCtfScalefactor"
ORIGIN_X = "rlnOriginXAngst"
ORIGIN_Y = "rlnOriginYAngst"
ANGLE_ROT = "rlnAngleRot"
ANGLE_TILT = "rlnAngleTilt"
ANGLE_PSI = "rlnAnglePsi"

# Optics table
PIXEL_SIZE = "rlnImagePixelSize"
IMAGE_SIZE = "rlnImageSize"
VOLTAGE = "rlnVoltage"
SPHERICAL_ABERRATION = "rlnSphericalAberration"
AMPLITUDE_CONTRAST = "rlnAmplitudeContrast"
ODD_ZERNIKE = "rlnOddZernike"
EVEN_ZERNIKE = "rlnEvenZernike"
BEAM_TILT_X = "rlnBeamTiltX"
BEAM_TILT_Y = "rlnBeamTiltY"
BEAM_TILT_SHIFT_X = "rlnBeamTiltShiftX"
BEAM_TILT_SHIFT_Y = "rlnBeamTiltShiftY"
MAG_MATRIX = ("rlnMagMat00", "rlnMagMat01", "rlnMagMat10", "rlnMagMat11")

# Columns a particle table needs before prediction is possible
NEEDED_PARTICLE_COLUMNS = (
    ORIGIN_X,
    ORIGIN_Y,
    ANGLE_ROT,
    ANGLE_TILT,
    ANGLE_PSI,
    OPTICS_GROUP,
)
