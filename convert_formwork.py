#!/usr/bin/env python
"""
Convert temporary formwork panels of an IFC model into walls and floors.

Usage:
    python convert_formwork.py input.ifc output.ifc [config.json]
    python convert_formwork.py input.ifc  # outputs to input_converted.ifc

Example:
    python convert_formwork.py models/level1_formwork.ifc models/level1_final.ifc
"""

import sys
from pathlib import Path
from formwork.conversion.conversion_pipeline import ConversionPipeline
from formwork.core.back_reference import has_tag
from formwork.core.config import Config, get_default_config
from formwork.core.models import ElementCategory
from formwork.host.ifc_model import IfcHostModel


def main():
    # Parse command line arguments
    if len(sys.argv) < 2:
        print("Usage: python convert_formwork.py input.ifc [output.ifc] [config.json]")
        print()
        print("Examples:")
        print("  python convert_formwork.py models/level1_formwork.ifc")
        print("  python convert_formwork.py models/level1_formwork.ifc models/level1_final.ifc")
        sys.exit(1)

    ifc_path = sys.argv[1]

    # Determine output file
    if len(sys.argv) >= 3:
        output_file = sys.argv[2]
    else:
        output_file = str(Path(ifc_path).with_name(Path(ifc_path).stem + "_converted.ifc"))

    # Verify input file exists
    if not Path(ifc_path).exists():
        print(f"Error: Input file not found: {ifc_path}")
        sys.exit(1)

    print("=" * 60)
    print("Formwork - Panel Conversion")
    print("=" * 60)
    print(f"Input:  {ifc_path}")
    print(f"Output: {output_file}")
    print()

    try:
        # Step 1: Configuration
        print("[1/4] Loading configuration...")
        config = Config(sys.argv[3]) if len(sys.argv) >= 4 else get_default_config()
        wall_profile = config.get_profile("wall")
        floor_profile = config.get_profile("floor")
        print(f"      [OK] Wall profile: {wall_profile}")
        print(f"      [OK] Floor profile: {floor_profile}")
        print()

        # Step 2: Collect temporary panels
        print("[2/4] Collecting temporary panels...")
        host = IfcHostModel.open(ifc_path, settings=config.settings)
        panels = [
            e for e in host.elements([ElementCategory.GENERIC])
            if e.is_formwork and has_tag(e.tag)
        ]
        print(f"      [OK] Panels: {len(panels)}")
        print()

        if not panels:
            print("Nothing to convert.")
            sys.exit(0)

        # Step 3: Convert
        print("[3/4] Converting panels...")
        pipeline = ConversionPipeline(
            host,
            settings=config.settings,
            wall_profile=wall_profile,
            floor_profile=floor_profile,
        )
        report = pipeline.convert([p.id for p in panels])
        print(f"      [OK] Created: {report.created}")
        print(f"      [OK] Deleted: {len(report.deleted_ids)}")
        if report.failed:
            print(f"      [!!] Failed: {len(report.failed)}")
        print()

        # Step 4: Write IFC
        print("[4/4] Writing IFC file...")
        host.write(output_file)
        print(f"      [OK] Wrote IFC file")
        print()

        # Summary
        strategies = {}
        for result in report.results:
            if result.success:
                strategies[result.strategy_index] = strategies.get(result.strategy_index, 0) + 1

        print("=" * 60)
        print("SUCCESS!")
        print("=" * 60)
        print(f"Generated: {output_file}")
        print()
        print("Summary:")
        print(f"  - {report.created} of {len(panels)} panels converted")
        for index in sorted(strategies):
            label = "floor path" if index == 0 else f"strategy {index}"
            print(f"      {label}: {strategies[index]}")
        for entity_id, reason in report.reasons.items():
            print(f"  - #{entity_id} failed: {reason}")
        print()

    except Exception as e:
        print()
        print("=" * 60)
        print("ERROR!")
        print("=" * 60)
        print(f"Failed to convert formwork: {e}")
        print()
        print("Common issues:")
        print("  - Transaction not committed -> Nothing was changed, rerun")
        print("  - Panels without tags -> Regenerate with generate_formwork.py")
        print("  - File not found -> Check file path is correct")
        sys.exit(1)


if __name__ == "__main__":
    main()
