"""Command line entry point: compute pairwise shifts for a project and save it.

    pairwise-shifts --project_file views.csv --method "Lucas-Kanade" --downsampling [1,2,2]
"""
import logging
import sys

from pydantic_settings import CliApp

from .parameters import PairwiseShiftParameters
from .pipeline import PairwiseShiftCalculator
from .project import StitchingProject


def main(args: list[str]) -> None:
    params = CliApp.run(PairwiseShiftParameters, cli_args=args)
    log_level = logging.DEBUG if params.verbose else logging.INFO
    logging.basicConfig(level=log_level)

    project = StitchingProject.load(params.project_file)
    PairwiseShiftCalculator(project, params.registration_config()).run()
    logging.info("Saving project ...")
    project.save(params.output_file)


def cli_entrypoint() -> None:
    main(sys.argv[1:])


if __name__ == "__main__":
    cli_entrypoint()
