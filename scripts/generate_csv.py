"""Generate sample department CSV files for exercising the importer."""
import csv
import random
import sys

from app.services.department_import import COLUMNS


def generate_csv(num_rows: int, output_file: str, invalid_ratio: float = 0.0) -> None:
    """
    Generate a departments CSV in the import template's column order.

    Args:
        num_rows: Number of department rows to generate
        output_file: Output CSV file path
        invalid_ratio: Share of rows given a malformed code
    """
    units = [
        "Intensive Care",
        "Emergency",
        "Outpatient",
        "Radiology",
        "Pharmacy",
        "Pediatrics",
        "Surgery",
        "Cardiology",
        "Laboratory",
        "Physical Therapy",
    ]

    with open(output_file, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow([column.label for column in COLUMNS])

        for i in range(num_rows):
            unit = random.choice(units)
            code = f"DEPT-{i+1:06d}"
            if random.random() < invalid_ratio:
                code = code.lower()

            writer.writerow([
                code,
                f"{unit} {i+1}",
                "1",
                f"{unit} ward, building {random.randint(1, 9)}",
                random.choice(["true", "false", ""]),
            ])

            # Print progress every 10,000 rows
            if (i + 1) % 10000 == 0:
                print(f"Generated {i+1:,} rows...")

    print(f"Generated {num_rows:,} departments in {output_file}")


def main():
    """Main function to parse arguments and generate CSV."""
    if len(sys.argv) < 2:
        print("Usage: python -m scripts.generate_csv <num_rows> [output_file] [invalid_ratio]")
        print("Example: python -m scripts.generate_csv 5000 departments_5k.csv 0.05")
        sys.exit(1)

    num_rows = int(sys.argv[1])
    output_file = sys.argv[2] if len(sys.argv) > 2 else f"departments_{num_rows}.csv"
    invalid_ratio = float(sys.argv[3]) if len(sys.argv) > 3 else 0.0

    print(f"Generating CSV with {num_rows:,} rows...")
    generate_csv(num_rows, output_file, invalid_ratio)


if __name__ == "__main__":
    main()
