"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.
"""

# Serial link
BAUD_RATE = "115200"
ISP_BAUD_RATE = "19200"
BUFFER_SIZE = 64
READ_TIMEOUT = 0.1

# Protocol bytes
ACK = 0x06
ESC = 0x1B

# Timing, the default budget is 100 ticks of 100 ms
TIMEOUT_TICKS = 100
TICK_INTERVAL = 0.1

# Device commands
LEAVE_PROGMODE = "Q\n"
COMMAND_TERMINATOR = "*"
COMMAND_DOWNLOAD = "D"
COMMAND_SIGNATURE = "S"
COMMAND_FUSE = "F"
COMMAND_CALIBRATE = "M"
COMMAND_POWER_ON = "V"
COMMAND_POWER_OFF = "X"

# Intel HEX
HEX_EOF_RECORD = ":00000001FF"
DEFAULT_FUSE_NIBBLE = 0x0F
MAX_IMAGE_SIZE = 0x10000

UNKNOWN_DEVICE = "unknown"

DEFAULT_ISP_PROGRAMMER = "avrispmkII"
SERIAL_ISP_PROGRAMMERS = ("arduino", "buspirate")
