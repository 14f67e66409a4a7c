"""Command line interface: python -m g3d"""

import argparse
import json
import sys
import warnings

import numpy as np

from .compiler import EXAMPLES, G3DCompiler


def _jsonable(value):
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (np.floating, np.integer)):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _parse_point(text: str):
    try:
        x, y = (float(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected 'x,y', got '{text}'")
    return (x, y)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='g3d',
        description='G3D - declarative language for mathematical 3D fields',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Compile a built-in example and print the program
  python -m g3d --example saddle --contours

  # Analyze your own program at t = 1.5
  python -m g3d --file surface.g3d --time 1.5 --steps 200 --streamlines

  # Geodesic between two points, results written to JSON
  python -m g3d --example double_well --geodesic 0.2,0.5 1,0 --export out.json
        """
    )

    parser.add_argument('--example', type=str, choices=sorted(EXAMPLES), help='Compile a built-in example program')
    parser.add_argument('--file', type=str, help='G3D source file to compile')
    parser.add_argument('--time', type=float, default=None, help='Animation parameter value (default: animation start)')
    parser.add_argument('--steps', type=int, default=0, help='Particle integration steps (default: 0, no particles)')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for particles and streamline seeding')
    parser.add_argument('--streamlines', action='store_true', help='Trace descent streamlines')
    parser.add_argument('--contours', action='store_true', help='Extract CONTOUR LEVELS isolines')
    parser.add_argument('--lyapunov', type=int, nargs='?', const=24, default=None, metavar='N',
                        help='Lyapunov stability grid of N x N samples (default N: 24)')
    parser.add_argument('--mesh', type=int, nargs='?', const=60, default=None, metavar='STEPS',
                        help='Sample the surface mesh and vector/tensor fields with colors (default STEPS: 60)')
    parser.add_argument('--geodesic', type=_parse_point, nargs=2, metavar='X,Y', help='Geodesic between two points')
    parser.add_argument('--export', type=str, help='Write results to a JSON file')
    return parser


def main(argv=None) -> int:
    """Command line interface for G3D"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.example:
        source = EXAMPLES[args.example]()
    elif args.file:
        try:
            with open(args.file, 'r') as f:
                source = f.read()
        except FileNotFoundError:
            print(f"Error: File '{args.file}' not found")
            return 1
    else:
        parser.print_help()
        return 0

    compiler = G3DCompiler()
    result = compiler.compile_dsl(source)
    if not result['success']:
        print(f"Compilation failed: {result.get('error', 'Unknown error')}")
        if 'traceback' in result:
            print(result['traceback'])
        return 1

    compiler.print_summary()
    report = {'program': compiler.get_info(), 'time': args.time}

    labels = compiler.labels(args.time)
    for text, (x, y, z) in labels:
        print(f"LABEL '{text}' at ({x:.3f}, {y:.3f}, {z:.3f})")
    report['labels'] = [{'text': text, 'position': list(pos)} for text, pos in labels]

    if args.steps > 0:
        particles = compiler.simulate_particles(args.steps, time=args.time, seed=args.seed)
        finite = sum(p.is_finite() for p in particles)
        print(f"Particles: {len(particles)} simulated for {args.steps} steps ({finite} finite)")
        report['particles'] = [{'id': p.id, 'x': p.x, 'y': p.y, 'vx': p.vx, 'vy': p.vy} for p in particles]

    if args.streamlines:
        from .streamlines import TracerConfig

        lines = compiler.trace_streamlines(args.time, TracerConfig(seed=args.seed))
        print(f"Streamlines: {len(lines)} traced")
        report['streamlines'] = [{'points': s.points, 'magnitudes': s.magnitudes, 'curvature': s.aux}
                                 for s in lines]

    if args.contours:
        if compiler.ir.contours is None:
            warnings.warn("Program has no CONTOUR LEVELS statement")
        contours = compiler.extract_contours(args.time)
        for isolines in contours:
            print(f"Contour {isolines.level:g}: {len(isolines)} segments, {len(isolines.polylines)} polylines")
        report['contours'] = [{'level': c.level, 'segments': c.segments} for c in contours]

    if args.lyapunov:
        grid = compiler.lyapunov_grid(args.time, args.lyapunov, args.lyapunov)
        print(f"Lyapunov grid: {grid.shape[1]}x{grid.shape[0]}, unstable fraction {np.mean(grid > 0.5):.2%}")
        report['lyapunov'] = grid

    if args.mesh:
        mesh = compiler.surface_mesh(args.time, args.mesh)
        print(f"Surface mesh: {len(mesh.vertices)} vertices, {len(mesh.faces)} faces")
        report['mesh'] = {'vertices': mesh.vertices, 'faces': mesh.faces,
                          'colors': compiler.surface_colors(mesh)}
        for name, sample in compiler.vector_fields(args.time).items():
            print(f"Vector field {name}: {len(sample)} arrows")
            report.setdefault('vectors', {})[name] = {'origins': sample.origins, 'vectors': sample.vectors,
                                                      'colors': sample.colors}
        for name, sample in compiler.tensor_glyphs(args.time).items():
            print(f"Tensor field {name}: {len(sample)} glyphs")
            report.setdefault('tensors', {})[name] = {'centers': sample.centers,
                                                      'eigenvalues': sample.eigenvalues,
                                                      'colors': sample.colors}

    if args.geodesic:
        start, end = args.geodesic
        path = compiler.geodesic(start, end, args.time)
        if path.reachable:
            print(f"Geodesic: distance {path.distance:.4f} over {len(path)} points")
        else:
            print("Geodesic: end point is not reachable on the surface mesh")
        report['geodesic'] = {'points': path.points, 'distance': path.distance if path.reachable else None,
                              'reachable': path.reachable}

    if args.export:
        print(f"\nExporting results to {args.export}...")
        with open(args.export, 'w') as f:
            json.dump(report, f, default=_jsonable, indent=2)
        print("Results saved successfully!")

    return 0


if __name__ == '__main__':
    sys.exit(main())
