import argparse
import json
import logging
import sys

from erc20.errors import ETLError
from erc20.etl import ERC20ETL

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(prog='erc20-etl')

    parser.add_argument("-c", "--config-file", type=str,
                        default="config.json", help="The config file")
    parser.add_argument("-s", "--start", type=int,
                        default=None, help="The start height, overrides the checkpoint")
    parser.add_argument("--follow", action="store_true",
                        help="Keep polling for new blocks after catching up")
    args = parser.parse_args(argv)

    # getting ready
    logging.basicConfig(format='%(asctime)s %(name)-12s %(levelname)-8s %(message)s',
                        datefmt='%m-%d %H:%M:%S', level=logging.WARNING)
    logging.getLogger('erc20').setLevel(logging.INFO)

    with open(args.config_file) as file:
        config_content = json.load(file)
    erc20_config = config_content["erc20"]

    etl = None
    try:
        etl = ERC20ETL(erc20_config)
        if erc20_config.get("scanner", {}).get("verify-contracts"):
            etl.verify_contracts()
        follow = args.follow or erc20_config.get("scanner", {}).get("follow", False)
        etl.work_flow(start=args.start, follow=follow)
    except ETLError as e:
        logger.critical(e)
        return 1
    finally:
        if etl is not None:
            etl.store.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
