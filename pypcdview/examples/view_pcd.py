"""
Open a .pcd or .pcd.gz file in an Open3D window.

    python -m pypcdview.examples.view_pcd cloud.pcd --point-size 3 --color "#00aaff"
    python -m pypcdview.examples.view_pcd cloud.pcd.gz --export cloud.ply
"""
import argparse
import asyncio

import open3d as o3d

from pypcdview.backend import Open3DBackend
from pypcdview.config import ViewerConfig, load_config
from pypcdview.errors import PcdViewerError
from pypcdview.logger import LogLevel, ViewerLogger, get_logger, set_logger
from pypcdview.pointcloud import PointSet
from pypcdview.session import SessionListener, ViewerSession


class LoggingListener(SessionListener):
    def __init__(self, logger):
        self.logger = logger

    def on_load_start(self, file_name):
        self.logger(f"Loading {file_name} ...")

    def on_load_success(self, point_count, file_name):
        self.logger(f"File: {file_name}, points: {point_count:,}")

    def on_load_error(self, message):
        self.logger(f"Error loading PCD file: {message}", 'error')


def parse_args():
    parser = argparse.ArgumentParser(description="Interactive PCD point cloud viewer")
    parser.add_argument("path", help="PCD file (.pcd or .pcd.gz)")
    parser.add_argument("--config", help="JSON settings file")
    parser.add_argument("--point-size", type=float, help="Point display size (0.1-10)")
    parser.add_argument("--color", help="Point color as #rrggbb, used when the file has no colors")
    parser.add_argument("--width", type=int)
    parser.add_argument("--height", type=int)
    parser.add_argument("--export", metavar="OUT", help="Write the points to OUT (.ply, .pcd, .xyz, ...) instead of showing them")
    parser.add_argument("--log-file", help="Also write debug output to this file")
    parser.add_argument("--debug", action="store_true", help="Print debug messages")
    return parser.parse_args()


def export(args, logger):
    try:
        points = PointSet.from_file(args.path)
    except PcdViewerError as e:
        logger(f"Error loading PCD file: {e}", "error")
        return 1
    if points.point_count:
        low, high = points.bounds()
        logger(f"Bounds: {low.tolist()} - {high.tolist()}", "debug")
    if not o3d.io.write_point_cloud(args.export, points.to_open3d()):
        logger(f"Could not write {args.export}", "error")
        return 1
    logger(f"Wrote {points.point_count:,} points to {args.export}")
    return 0


async def run(args):
    logger = get_logger("view_pcd")
    config = load_config(args.config) if args.config else ViewerConfig()
    overrides = {
        'point_size': args.point_size,
        'point_color': args.color,
        'width': args.width,
        'height': args.height,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    config = config.validated()

    backend = Open3DBackend(config.width, config.height, window_name="PCD 3D Viewer",
                            background=config.background)
    async with ViewerSession(backend, config, listener=LoggingListener(logger)) as session:
        if not await session.load_file(args.path):
            return 1
        while session.render_loop.running:
            await asyncio.sleep(0.1)
    return 0


def main():
    args = parse_args()
    level = LogLevel.DEBUG if args.debug else LogLevel.INFO
    if args.log_file:
        set_logger(ViewerLogger(mode='both', log_file=args.log_file, console_level=level))
    else:
        set_logger(ViewerLogger(mode='console', console_level=level))
    if args.export:
        raise SystemExit(export(args, get_logger("view_pcd")))
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
