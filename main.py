# main.py
import argparse, math, os, random

# Ensure SDL picks a usable video driver (helps when run from terminals that default to headless)
if os.name == "nt" and not os.environ.get("SDL_VIDEODRIVER"):
    os.environ["SDL_VIDEODRIVER"] = "windows"

import pygame

from pfloc.config import (
    WINDOW_WIDTH, WINDOW_HEIGHT, BG_COLOR, TRUTH_COLOR,
    load_config, lidar_flat, sim_flat, planner_flat, latency_flat, view_flat, maps_dir, map_name,
)
from pfloc.draw import (
    draw_map, draw_particles, draw_estimate, draw_scan, draw_path, draw_status,
    fit_view, px_to_world,
)
from pfloc.geom import angle_diff, offset_point
from pfloc.latency import LatencyCompensator
from pfloc.particle_filter import FilterParams, ParticleFilter, STATUS_COLLAPSED
from pfloc.planner import GlobalPlanner
from pfloc.sim import SimRobot, follow_path
from pfloc.vector_map import VectorMap

APP_TITLE = "PFLOC - particle filter localization"

CONTROLS = [
    ("LeftClick", "Plan a path to the clicked point"),
    ("SPACE", "Pause / resume"),
    ("R", "Re-initialize the filter at the true pose"),
    ("K", "Odometry glitch (jump 2 units)"),
    ("S", "Toggle predicted scan overlay"),
    ("ESC", "Quit"),
]


def _parse_args(argv=None):
    ap = argparse.ArgumentParser(description=APP_TITLE)
    ap.add_argument("--config", default=None, help="path to config.json")
    ap.add_argument("--map", default=None, help="map name under maps_dir")
    ap.add_argument("--seed", type=int, default=None, help="random seed for filter and sim")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    """Main application loop."""
    args = _parse_args(argv)
    cfg = load_config(args.config)
    lidar = lidar_flat(cfg)
    sim_cfg = sim_flat(cfg)
    view_cfg = view_flat(cfg)
    params = FilterParams.from_config(cfg)
    seed = args.seed if args.seed is not None else params.seed

    vmap = VectorMap.load(args.map or map_name(cfg), maps_dir(cfg))
    pf = ParticleFilter(params, rng=random.Random(seed), maps_dir=maps_dir(cfg))
    start = (float(sim_cfg["start_x"]), float(sim_cfg["start_y"]))
    start_angle = float(sim_cfg["start_angle"])
    robot = SimRobot(start, start_angle, rng=random.Random(None if seed is None else seed + 1),
                     odom_sigma_xy=float(sim_cfg["odom_sigma_xy"]),
                     odom_sigma_ang=float(sim_cfg["odom_sigma_ang"]))
    pf.initialize(vmap, robot.loc, robot.angle)
    planner = GlobalPlanner.from_config(vmap, planner_flat(cfg))
    compensator = LatencyCompensator.from_config(latency_flat(cfg))

    pygame.init()
    screen = pygame.display.set_mode((WINDOW_WIDTH, WINDOW_HEIGHT))
    pygame.display.set_caption(APP_TITLE)
    clock = pygame.time.Clock()
    font = pygame.font.SysFont(None, 20)
    view = fit_view(vmap, WINDOW_WIDTH, WINDOW_HEIGHT)

    speed = float(sim_cfg["speed"])
    dt = float(sim_cfg["dt"])
    range_sigma = float(sim_cfg["range_sigma"])
    show_scan = int(view_cfg.get("show_scan", 1)) == 1
    path = []
    paused = False
    last_laser = "-"
    collapses = 0

    print("Controls:")
    for key, desc in CONTROLS:
        print(f"  {key:<10} {desc}")

    running = True
    while running:
        clock.tick(int(round(1.0 / dt)) if dt > 0 else 30)
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                running = False
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    running = False
                elif event.key == pygame.K_SPACE:
                    paused = not paused
                elif event.key == pygame.K_r:
                    pf.initialize(vmap, robot.loc, robot.angle)
                elif event.key == pygame.K_k:
                    robot.glitch_odometry(2.0)
                elif event.key == pygame.K_s:
                    show_scan = not show_scan
            elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                goal = px_to_world(event.pos, view)
                planner.initialize_map(robot.loc)
                path = planner.get_global_path(goal)
                if not path:
                    print(f"No path to ({goal[0]:.2f}, {goal[1]:.2f})")

        if not paused:
            prev = (robot.loc, robot.angle)
            path = follow_path(robot, path, speed, dt)
            moved = (robot.loc, robot.angle) != prev
            if moved:
                step = math.hypot(robot.loc[0] - prev[0][0], robot.loc[1] - prev[0][1])
                compensator.record_new_input(step / dt, 0.0,
                                             angle_diff(robot.angle, prev[1]) / dt)
            odom_loc, odom_angle = robot.odometry()
            pf.observe_odometry(odom_loc, odom_angle)
            ranges = robot.scan(vmap, lidar, range_sigma, params.laser_offset)
            compensator.record_observation()
            last_laser = pf.observe_laser(ranges, lidar["range_min"], lidar["range_max"],
                                          lidar["angle_min"], lidar["angle_max"])
            if last_laser == STATUS_COLLAPSED:
                collapses += 1

        est = pf.get_location()
        screen.fill(BG_COLOR)
        draw_map(screen, vmap, view)
        draw_path(screen, path, view)
        draw_particles(screen, pf.particles, view)
        draw_estimate(screen, robot.loc, robot.angle, view, color=TRUTH_COLOR)
        lines = [f"truth  x={robot.loc[0]:.2f} y={robot.loc[1]:.2f} th={math.degrees(robot.angle):.1f}"]
        if est is not None:
            (ex, ey), eth = est
            if show_scan:
                pts = pf.predicted_scan((ex, ey), eth, int(lidar["num_ranges"]),
                                        lidar["range_min"], lidar["range_max"],
                                        lidar["angle_min"], lidar["angle_max"])
                origin = offset_point((ex, ey), eth, params.laser_offset)
                draw_scan(screen, pts, origin, view)
            draw_estimate(screen, (ex, ey), eth, view)
            px, py, pth = compensator.predicted_state((ex, ey), eth)
            lines.append(f"est    x={ex:.2f} y={ey:.2f} th={math.degrees(eth):.1f}")
            lines.append(f"ahead  x={px:.2f} y={py:.2f} th={math.degrees(pth):.1f}")
        lines.append(f"laser: {last_laser}  n_eff={pf.effective_sample_size():.1f}  collapses={collapses}")
        if paused:
            lines.append("PAUSED")
        draw_status(screen, font, lines)
        pygame.display.flip()

    pygame.quit()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
