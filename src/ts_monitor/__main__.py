"""
Allow running ts_monitor with python -m
"""

from .cli import main

if __name__ == '__main__':
    main()
