# tabtk/defaults.py
"""Default settings - no imports to avoid circular dependencies."""

settings = {
    'default_batch_size': 1000,
    'default_column_case': 'preserve',
    'default_db_type': 'sqlserver',
    'default_delimiter': '|',
    'connect_timeout': 30,        # seconds to wait for a session to open
    'command_timeout': 2000,      # seconds per statement
    'bulk_copy_timeout': 2000,    # seconds per bulk copy
    'null_string': '',            # how null is represented in text outputs
    'date_format': '%Y-%m-%d',
    'time_format': '%H:%M:%S',
    'datetime_format': '%Y-%m-%d %H:%M:%S',
    'timestamp_format': '%Y-%m-%d %H:%M:%S.%f',  # with microseconds
    'tz_suffix': ' %z',
    'default_sheet_pattern': r'^Sheet\d*$',  # names the spreadsheet host gives new sheets
    'header_fill_color': '1F4E78',
    'header_font_color': 'FFFFFF',
    'max_column_width': 60,
    'logging': {
        'directory': './logs',
        'level': 'INFO',
        'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        'timestamp_format': '%Y-%m-%d %H:%M:%S',
        'filename_format': '%Y%m%d_%H%M%S',  # Set to '' for single log file (no timestamp)
        'split_errors': True,
        'console': True,
        'retention_days': 30,
    }
}
