import argparse
import logging
import time
from pathlib import Path

import pandas as pd

from timetabling.config import EvoConfig, load_config
from timetabling.ctt_reader import read_ctt_file, write_solution_file
from timetabling.errors import NoBestYet
from timetabling.ga import EvolutionEngine
from timetabling.generator import SolutionFileGenerator
from timetabling.solution_table import SolutionTable

ALL_INSTANCES = "ALL"
INSTANCES_DIR = "instances"


def print_table_summary(table: SolutionTable):
    print("-" * 60)
    try:
        print(f"-- Best Penalty Solution: Penalty: {table.get_best_penalty()}, "
              f"Fairness: {table.get_best_fairness()}")
    except NoBestYet:
        print("-- No solution voted yet")
        return
    for label, vote in (
        ("Best Fairness", table.get_fairest_vote()),
        ("Worst Penalty", table.get_worst_penalty_vote()),
        ("Worst Fairness", table.get_unfairest_vote()),
    ):
        if vote is not None:
            print(f"-- {label} Solution: Penalty: {vote.penalty_sum}, Fairness: {vote.fairness}")


def export_outputs(engine: EvolutionEngine, elapsed: float, out_dir: Path) -> dict:
    out_dir.mkdir(parents=True, exist_ok=True)
    table = engine.table
    best = table.get_best_solution()
    if best is not None:
        write_solution_file(best, out_dir / f"{engine.instance.name}.sol")
    if engine.history:
        pd.DataFrame(engine.history).to_csv(out_dir / "history.csv", index=False)
    fairest = table.get_fairest_vote()
    worst = table.get_worst_penalty_vote()
    unfairest = table.get_unfairest_vote()
    metrics = {
        "instance": engine.instance.name,
        "table_size": table.size,
        "best_penalty": table.get_best_penalty() if best is not None else None,
        "best_fairness": table.get_best_fairness() if best is not None else None,
        "fairest_penalty": fairest.penalty_sum if fairest else None,
        "fairest_fairness": fairest.fairness if fairest else None,
        "worst_penalty": worst.penalty_sum if worst else None,
        "worst_fairness": worst.fairness if worst else None,
        "unfairest_penalty": unfairest.penalty_sum if unfairest else None,
        "unfairest_fairness": unfairest.fairness if unfairest else None,
        "generator_success": engine.generator.success,
        "genetist_success": engine.genetist.success,
        "genetist_failure": engine.genetist.failure,
        "time_sec": elapsed,
        "generations_ran": len(engine.history),
    }
    pd.DataFrame([metrics]).to_csv(out_dir / "metrics.csv", index=False)
    return metrics


def run_instance(ctt_path, initial_solutions, cfg: EvoConfig, generations=None, out_dir="outputs") -> dict:
    instance = read_ctt_file(ctt_path)
    print(f"Instance {instance.name}: {instance.days} days x {instance.periods_per_day} periods, "
          f"{instance.n_rooms} rooms, {len(instance.courses)} courses, {instance.n_curricula} curricula")

    generator = SolutionFileGenerator(initial_solutions, workers=cfg.workers)
    engine = EvolutionEngine(instance, generator, cfg)

    generations = cfg.generations if generations is None else generations
    print(f"Generations: {generations} | Table size: {cfg.table_size}")
    start = time.perf_counter()
    engine.evolve(generations)
    elapsed = time.perf_counter() - start

    print_table_summary(engine.table)
    print(f"Genetist success: {engine.genetist.success} | failure: {engine.genetist.failure}")
    print(f"Time: {elapsed:.2f}s")

    out_dir = Path(out_dir)
    metrics = export_outputs(engine, elapsed, out_dir)
    print(f"Results saved in {out_dir}")
    return metrics


def seed_directory(initial_solutions, ctt_path: Path) -> Path:
    """A per-instance subdirectory (named after the .ctt stem) wins over the shared one."""
    root = Path(initial_solutions)
    own = root / ctt_path.stem
    return own if own.is_dir() else root


def run_all_instances(instances_dir, initial_solutions, cfg: EvoConfig, generations=None,
                      out_dir="outputs") -> pd.DataFrame:
    instance_files = sorted(Path(instances_dir).glob("*.ctt"))
    if not instance_files:
        raise FileNotFoundError(f"No .ctt instances found in {instances_dir}")

    out_dir = Path(out_dir)
    rows = []
    for ctt_path in instance_files:
        metrics = run_instance(
            ctt_path,
            seed_directory(initial_solutions, ctt_path),
            cfg,
            generations=generations,
            out_dir=out_dir / ctt_path.stem,
        )
        rows.append({"file": ctt_path.name, **metrics})

    summary = pd.DataFrame(rows)
    out_dir.mkdir(parents=True, exist_ok=True)
    summary.to_csv(out_dir / "allinstances.csv", index=False)
    print(f"Summary of {len(rows)} instances saved in {out_dir / 'allinstances.csv'}")
    return summary


def main():
    parser = argparse.ArgumentParser(description="Steady-state evolutionary curriculum timetabling")
    parser.add_argument(
        "instance",
        help=f"ITC-2007 .ctt problem instance, a directory of instances, or {ALL_INSTANCES} for ./{INSTANCES_DIR}",
    )
    parser.add_argument("initial_solutions", help="Directory with feasible .sol timetables to seed from")
    parser.add_argument("--config", default="config.yaml", help="Path to the configuration file")
    parser.add_argument("--generations", type=int, default=None, help="Overrides the configured generations")
    parser.add_argument("--out_dir", default="outputs", help="Directory for results")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = load_config(args.config)
    target = Path(INSTANCES_DIR if args.instance == ALL_INSTANCES else args.instance)
    if target.is_dir():
        run_all_instances(target, args.initial_solutions, cfg, args.generations, args.out_dir)
    else:
        run_instance(target, args.initial_solutions, cfg, args.generations, args.out_dir)


if __name__ == "__main__":
    main()
