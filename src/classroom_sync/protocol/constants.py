# Envelope type constants (stringly-typed protocol; canonical list lives here)

# publisher -> subscribers
T_DRAW_OPERATION = "draw_operation"
T_CLEAR_CANVAS = "clear_canvas"
T_AUDIO_CHUNK = "audio_chunk"

# degraded inbound only (never sent)
T_TEXT = "text"
T_ERROR = "error"

# Channel concerns; one connection per room per concern
CONCERN_WHITEBOARD = "whiteboard"
CONCERN_AUDIO = "audio"
