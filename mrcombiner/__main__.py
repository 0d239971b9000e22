from mrcombiner.cli import main

main()
