from kubepick.cli import main

main()
