#!/usr/bin/env python3
"""
Generate a synthetic foodborne-illness outbreak dataset as CSV.

The rows mimic a public outbreak surveillance export: one row per
outbreak with a report date, state, setting, pathogen, suspected food
vehicle, and case / hospitalisation counts. All values are synthetic but
seeded, so every run produces the same file. A few patterns are planted
for the agents to find (a summer Salmonella peak, leafy-green Norovirus
clusters, one outlier outbreak).

Usage:
    python scripts/generate_sample_csv.py [--rows 600] [--output PATH]

Output (default):
    data/sample_dataset.csv   (matches DEFAULT_DATASET_PATH)
"""

import argparse
import csv
import random
from datetime import date, timedelta
from pathlib import Path

STATES = ["CA", "TX", "NY", "FL", "IL", "OH", "WA", "GA", "MN", "CO"]
SETTINGS = ["Restaurant", "Private home", "Catering", "School", "Long-term care", "Farm"]
VEHICLES = {
    "Salmonella": ["Chicken", "Eggs", "Cucumbers", "Pork"],
    "Norovirus": ["Leafy greens", "Oysters", "Berries", "Multiple foods"],
    "E. coli O157:H7": ["Ground beef", "Leafy greens", "Flour"],
    "Campylobacter": ["Raw milk", "Chicken"],
    "Listeria": ["Soft cheese", "Deli meat", "Cantaloupe"],
}
PATHOGEN_WEIGHTS = {
    "Salmonella": 0.34,
    "Norovirus": 0.33,
    "E. coli O157:H7": 0.14,
    "Campylobacter": 0.12,
    "Listeria": 0.07,
}
FIELDS = [
    "report_date",
    "state",
    "setting",
    "pathogen",
    "food_vehicle",
    "illnesses",
    "hospitalizations",
    "deaths",
    "water_related",
]


def _pathogen(rng: random.Random, day: date) -> str:
    weights = dict(PATHOGEN_WEIGHTS)
    # Salmonella peaks June to August
    if day.month in (6, 7, 8):
        weights["Salmonella"] *= 2.0
    names = list(weights)
    return rng.choices(names, weights=[weights[n] for n in names])[0]


def generate_rows(count: int, seed: int = 42) -> list[dict[str, str]]:
    rng = random.Random(seed)
    start = date(2019, 1, 1)
    span_days = 5 * 365
    rows = []

    for i in range(count):
        day = start + timedelta(days=(i * span_days) // count)
        pathogen = _pathogen(rng, day)
        vehicle = rng.choice(VEHICLES[pathogen])
        illnesses = max(2, int(rng.lognormvariate(2.3, 0.8)))
        if pathogen == "Norovirus" and vehicle == "Leafy greens":
            illnesses *= 2
        hospitalizations = sum(rng.random() < 0.12 for _ in range(illnesses))
        deaths = 1 if pathogen == "Listeria" and rng.random() < 0.3 else 0

        rows.append({
            "report_date": day.isoformat(),
            "state": rng.choice(STATES),
            "setting": rng.choice(SETTINGS),
            "pathogen": pathogen,
            "food_vehicle": vehicle,
            "illnesses": str(illnesses),
            # Roughly 3% unreported
            "hospitalizations": "" if rng.random() < 0.03 else str(hospitalizations),
            "deaths": str(deaths),
            "water_related": "Yes" if rng.random() < 0.05 else "No",
        })

    # One large outlier outbreak
    outlier = rows[count // 2]
    outlier.update(illnesses="412", hospitalizations="57", pathogen="Salmonella", food_vehicle="Cucumbers")
    return rows


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--rows", type=int, default=600)
    parser.add_argument("--output", default="data/sample_dataset.csv")
    args = parser.parse_args()

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=FIELDS)
        writer.writeheader()
        writer.writerows(generate_rows(args.rows))

    print(f"Generated: {output_path} ({output_path.stat().st_size:,} bytes, {args.rows} rows)")


if __name__ == "__main__":
    main()
