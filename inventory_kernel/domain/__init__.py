"""Pure domain core: clock, balance fold, DTOs.  Zero I/O."""
