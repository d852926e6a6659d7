"""Run the fleet-trust command line tool."""

from fleet_trust.tool.fleet_trust import main

main()
