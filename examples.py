# Compile the built-in programs and run the engines on them
from g3d import run_example

# Saddle: level sets through the origin
results = run_example('saddle')
for isolines in results['compiler'].extract_contours():
    print(f"level {isolines.level:g}: {len(isolines.polylines)} polylines")

# Double well: particles settle into the two basins
results = run_example('double_well', verbose=False)
particles = results['compiler'].simulate_particles(steps=300, seed=1)
left = sum(1 for p in particles if p.x < 0)
print(f"{left} particles in the left basin, {len(particles) - left} in the right")

# Exceptional points: stability map at t = 0
results = run_example('exceptional_points', time=0.0, verbose=False)
grid = results['compiler'].lyapunov_grid(time=0.0, width=24, height=24)
print(f"unstable fraction: {(grid > 0.5).mean():.2%}")
