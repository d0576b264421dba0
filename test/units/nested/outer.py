require_relative("inner")

OUTER_SAW = INNER_VALUE + 1
