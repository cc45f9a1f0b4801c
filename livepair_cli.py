#!/usr/bin/env python3

import argparse
import logging
import sys
import yaml
from rich.console import Console
from rich.logging import RichHandler
from livepairlib.core import errors
from livepairlib.core import loader
from livepairlib.core import utils
from livepairlib.core.resource import LiveResource

#============================================

def parse_args():
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(description="Build a live photo pair from a JPEG and a movie")
	parser.add_argument('-i', '--image', dest='image_file', required=True,
		help='still image (.jpg) for the pair')
	parser.add_argument('-m', '--movie', dest='movie_file', required=True,
		help='movie (.mov) for the pair')
	parser.add_argument('-s', '--size', dest='size', default='1080x1920',
		help='target display size as WIDTHxHEIGHT')
	parser.add_argument('-c', '--config', dest='config_file',
		help='yaml settings file')
	parser.add_argument('-S', '--save', dest='save', action='store_true',
		help='save the pair to the photo library')
	parser.add_argument('-k', '--keep-temp', dest='keep_temp', action='store_true',
		help='keep the temporary pair files after saving')
	parser.add_argument('-p', '--dump-plan', dest='dump_plan', action='store_true',
		help='print the assembled pair as yaml')
	parser.add_argument('-q', '--quiet', dest='quiet', action='store_true',
		help='only print warnings and errors')
	parser.set_defaults(keep_temp=False)
	args = parser.parse_args()
	return args

#============================================

def setup_logging(quiet: bool) -> None:
	level = logging.WARNING if quiet else logging.INFO
	logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]",
		handlers=[RichHandler(console=Console(stderr=True))])

#============================================

def run(args) -> None:
	settings = loader.SettingsLoader(args.config_file).load()
	with LiveResource(settings) as resource:
		live_photo = resource.request_with(args.image_file, args.movie_file,
			args.size).result()
		saved_paths = []
		if args.save:
			saved_paths = resource.save().result()
		if args.dump_plan:
			plan = {
				'identifier': live_photo.identifier,
				'image': live_photo.image_path,
				'movie': live_photo.movie_path,
				'size': list(live_photo.size),
				'saved': saved_paths,
				'settings': settings.as_dict(),
			}
			print(yaml.safe_dump(plan, sort_keys=False))
		# without --save the temporary pair is the output
		if args.save and not args.keep_temp:
			resource.flush()

#============================================

def main():
	args = parse_args()
	utils.set_quiet_mode(args.quiet)
	setup_logging(args.quiet)
	try:
		run(args)
	except errors.LivePairError as error:
		logging.getLogger("livepair").error("%s", error)
		sys.exit(1)


if __name__ == '__main__':
	main()
