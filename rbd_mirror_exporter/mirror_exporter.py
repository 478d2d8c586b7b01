#!/usr/bin/env python3
from .exporter_common import run_exporter


def main():
    run_exporter()


if __name__ == "__main__":
    main()
