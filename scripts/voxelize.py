"""
Sample a volume URI into .npy volumes, one file per frame.

The circuit part of the URI is informational; volumes are sampled from the
synthetic test circuit.

    python scripts/voxelize.py --volume "neurovoxspikes://?duration=5#Column" \
        --frames 0 10 --size 64 --datatype char --output out/spikes
"""
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import numpy as np

from neurovox.functors import make_functor
from neurovox.reporting import save_report, summarize_volume
from neurovox.sources import make_source
from neurovox.synthetic import make_synthetic_circuit
from neurovox.types import SyntheticCircuitParams
from neurovox.uri import parse_volume_uri
from neurovox.volume import PRECISIONS, Volume, precision
from neurovox.voxelizer import Voxelizer

logger = logging.getLogger("voxelize")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--volume", default="neurovox://",
                        help="Volume URI, e.g. neurovoxsomas://?report=voltage#Column")
    parser.add_argument("-s", "--size", type=int, default=128,
                        help="Voxels per axis of the cubic output volume")
    parser.add_argument("-d", "--datatype", default="float", choices=sorted(PRECISIONS),
                        help="Precision of the output volume")
    parser.add_argument("--clamp", action="store_true",
                        help="Round and clamp integer output instead of rescaling each frame "
                             "onto the full range of the precision")
    frames = parser.add_mutually_exclusive_group()
    frames.add_argument("-t", "--time", type=float, help="Timestamp to load (ms)")
    frames.add_argument("--times", type=float, nargs=2, metavar=("START", "END"),
                        help="Time range [start end) to load (ms)")
    frames.add_argument("-f", "--frame", type=int, help="Frame to load")
    frames.add_argument("--frames", type=int, nargs=2, metavar=("START", "END"),
                        help="Frame range [start end) to load")
    parser.add_argument("-o", "--output", default="volume",
                        help="Output file name; gets the frame number for ranges")
    parser.add_argument("--cells", type=int, default=10,
                        help="Cells in the synthetic circuit")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--report", help="Optional JSON file with per-frame statistics")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def frame_range(args, dt):
    """Requested [start, end) frames; frame 0 by default."""
    if args.time is not None:
        frame = int(args.time / dt)
        return frame, frame + 1
    if args.times is not None:
        return int(args.times[0] / dt), int(args.times[1] / dt)
    if args.frame is not None:
        return args.frame, args.frame + 1
    if args.frames is not None:
        return args.frames[0], args.frames[1]
    return 0, 1


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    config = parse_volume_uri(args.volume)
    circuit = make_synthetic_circuit(SyntheticCircuitParams(num_cells=args.cells, seed=args.seed))
    source = make_source(config, circuit)
    functor = make_functor(source, config)
    volume = Volume.from_bounding_box(
        source.bounding_box, size=args.size, dtype=precision(args.datatype),
        rescale=not args.clamp,
    )
    logger.info(f"Sampling volume as {args.datatype} ({volume.dtype.name}) data")
    voxelizer = Voxelizer(functor, volume)

    start, end = frame_range(args, source.dt)
    digits = len(str(end))
    directory = os.path.dirname(args.output)
    if directory:
        os.makedirs(directory, exist_ok=True)

    summaries = {}
    for frame in range(start, end):
        if not voxelizer.sample_frame(frame):
            continue
        path = args.output
        if end - start > 1:
            path = f"{args.output}{frame:0{digits}d}"
        np.save(path + ".npy", volume.data)
        summaries[str(frame)] = summarize_volume(volume).to_dict()
        logger.info(f"Frame {frame} written to {path}.npy")

    if args.report:
        save_report(
            {
                "volume": args.volume,
                "origin": volume.origin,
                "spacing": volume.spacing,
                "frames": summaries,
            },
            args.report,
        )
    return 0 if summaries else 1


if __name__ == "__main__":
    sys.exit(main())
