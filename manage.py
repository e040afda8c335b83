#!/usr/bin/env python
"""Django's command-line utility for administrative tasks."""
import os
import sys


def main():
    current_path = os.path.dirname(os.path.abspath(__file__))
    if current_path not in sys.path:
        sys.path.insert(0, current_path)

    # `manage.py test` runs against the test overrides unless told otherwise
    default_settings = "config.settings.test" if sys.argv[1:2] == ["test"] else "config.settings.local"
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", default_settings)

    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Make sure it's installed and "
            "available on your PYTHONPATH. Activate your virtualenv if needed."
        ) from exc

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
